"""Settings I/O, Versionierung und die unveränderliche Laufzeit-Konfiguration."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path

# Wird bei jeder strukturellen Änderung am Settings-Schema hochgezählt.
# load_settings() prüft dies und migriert automatisch.
SETTINGS_VERSION = 1

DEFAULT_BASE_URL = "https://api.zuludesk.com"


class ConfigurationError(ValueError):
    """Pflichtwert der Konfiguration fehlt oder ist ungültig."""


# --- Defaults + Migration ---


def generate_default_settings() -> dict:
    """Erzeugt ein vollständiges Settings-Dict mit aktuellem Schema."""
    return {
        "settings_version": SETTINGS_VERSION,
        "api": {
            "base_url": DEFAULT_BASE_URL,
            "authorization": "",
            "max_retries": 5,
            "timeout": 30,
            "retry_delay": 1.0,
        },
        "groups": {
            "class_name_pattern": "",
            "alt_name_pattern": "",
            "ignored_description": "",
            "min_valid_group_count": 1,
            "require_members": False,
        },
        "classes": {
            "created_description": "",
            "teacher_group_id": 0,
            "teacher_group_name": "",
        },
        "failsafe": {
            "changed_students_limit": 10,
            "changed_teachers_limit": 2,
            "stop_on_error": True,
        },
        "log_file": {
            "enabled": True,
            "dir_path": ".",
            "file_name": "",
            "auto_clear": False,
        },
        "console": {
            "colored_output": True,
            "progress_bar_width": 20,
            "progress_bar_offset": "",
        },
    }


# Flaches camelCase-Format der alten scriptConfig.json → (Sektion, Schlüssel)
_LEGACY_KEYS: dict[str, tuple[str, str]] = {
    "authorization": ("api", "authorization"),
    "classUserGroupRegEx": ("groups", "class_name_pattern"),
    "altUserGroupRegEx": ("groups", "alt_name_pattern"),
    "minValidGroupCount": ("groups", "min_valid_group_count"),
    "createdClassDescription": ("classes", "created_description"),
    "teacherGroupID": ("classes", "teacher_group_id"),
    "teacherGroupName": ("classes", "teacher_group_name"),
    "changedStudentsLimit": ("failsafe", "changed_students_limit"),
    "changedTeachersLimit": ("failsafe", "changed_teachers_limit"),
    "coloredConsoleOutputs": ("console", "colored_output"),
    "progressBarWidth": ("console", "progress_bar_width"),
    "progressBarOffset": ("console", "progress_bar_offset"),
}

_LEGACY_LOG_KEYS: dict[str, str] = {
    "enableLogFile": "enabled",
    "dirPath": "dir_path",
    "logFileName": "file_name",
    "autoClear": "auto_clear",
}


def _migrate_legacy(old_settings: dict) -> dict:
    """Übersetzt das flache Format (Version 0) in verschachtelte Sektionen."""
    nested: dict = {}
    for old_key, (section, key) in _LEGACY_KEYS.items():
        if old_key in old_settings:
            nested.setdefault(section, {})[key] = old_settings[old_key]

    old_log = old_settings.get("logFileConfig") or {}
    for old_key, key in _LEGACY_LOG_KEYS.items():
        if old_key in old_log:
            nested.setdefault("log_file", {})[key] = old_log[old_key]
    return nested


def migrate_settings(old_settings: dict) -> dict:
    """Migriert existierende Settings auf das aktuelle Schema.

    Alte flache Dateien (ohne ``settings_version``) werden zuerst in
    Sektionen übersetzt. Danach werden alle Werte übernommen, die im neuen
    Schema existieren; neue Felder bekommen Defaults, veraltete fallen weg.
    """
    if old_settings.get("settings_version", 0) == 0 and "groups" not in old_settings:
        old_settings = _migrate_legacy(old_settings)

    new_settings = generate_default_settings()
    for section, defaults in new_settings.items():
        if not isinstance(defaults, dict):
            continue
        old_section = old_settings.get(section, {})
        for key in defaults:
            if key in old_section:
                defaults[key] = old_section[key]

    return new_settings


def load_settings(settings_path: str | Path = "settings.json") -> dict:
    """Lädt Settings und migriert bei Bedarf auf die aktuelle Version.

    Wirft FileNotFoundError wenn keine Datei existiert.
    """
    path = Path(settings_path)
    if not path.exists():
        raise FileNotFoundError(f"Settings nicht gefunden: {path}")
    with open(path, encoding="utf-8") as f:
        settings = json.load(f)

    stored_version = settings.get("settings_version", 0)
    if stored_version < SETTINGS_VERSION:
        settings = migrate_settings(settings)
        save_settings(settings, settings_path)

    return settings


def save_settings(settings: dict, settings_path: str | Path = "settings.json") -> None:
    """Speichert Settings als JSON. Setzt immer die aktuelle Version."""
    settings["settings_version"] = SETTINGS_VERSION
    with open(settings_path, "w", encoding="utf-8") as f:
        json.dump(settings, f, indent=4, ensure_ascii=False)


# --- Laufzeit-Konfiguration ---


@dataclass(frozen=True)
class SyncConfig:
    """Einmal beim Start gebaute Konfiguration, wird explizit weitergereicht."""

    class_name_pattern: str
    ignored_group_description: str
    created_class_description: str
    teacher_group_id: int
    min_valid_group_count: int = 1
    alt_name_pattern: str = ""
    require_members: bool = False
    changed_students_limit: int = 10
    changed_teachers_limit: int = 2
    stop_on_error: bool = True

    def __post_init__(self) -> None:
        if not self.class_name_pattern:
            raise ConfigurationError("class_name_pattern ist nicht gesetzt.")
        if not self.ignored_group_description:
            raise ConfigurationError(
                "Keine Beschreibung für ignorierte Gruppen gesetzt "
                "(ignored_description / created_description)."
            )
        for pattern in (self.class_name_pattern, self.alt_name_pattern):
            if not pattern:
                continue
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ConfigurationError(
                    f"Ungültiger regulärer Ausdruck '{pattern}': {exc}"
                ) from exc

    @classmethod
    def from_settings(cls, settings: dict) -> SyncConfig:
        groups = settings.get("groups", {})
        classes = settings.get("classes", {})
        failsafe = settings.get("failsafe", {})

        created = (classes.get("created_description") or "").strip()
        ignored = (groups.get("ignored_description") or "").strip() or created

        try:
            teacher_group_id = int(classes.get("teacher_group_id", 0))
            min_count = int(groups.get("min_valid_group_count", 1))
            students_limit = int(failsafe.get("changed_students_limit", 10))
            teachers_limit = int(failsafe.get("changed_teachers_limit", 2))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Ungültiger Zahlenwert in den Settings: {exc}") from exc

        return cls(
            class_name_pattern=groups.get("class_name_pattern") or "",
            ignored_group_description=ignored,
            created_class_description=created or ignored,
            teacher_group_id=teacher_group_id,
            min_valid_group_count=min_count,
            alt_name_pattern=groups.get("alt_name_pattern") or "",
            require_members=bool(groups.get("require_members", False)),
            changed_students_limit=students_limit,
            changed_teachers_limit=teachers_limit,
            stop_on_error=bool(failsafe.get("stop_on_error", True)),
        )
