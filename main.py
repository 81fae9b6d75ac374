"""Class Spider — hält Jamf-School-Klassen synchron zu den Benutzergruppen."""

from __future__ import annotations

import argparse
import base64
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

from colorama import Fore, Style, just_fix_windows_console
from tqdm import tqdm

from core.engine import InsufficientGroupsError
from core.jamf_client import JamfApiError, JamfSchoolClient
from core.models import SyncReport
from core.reconciler import synchronize
from core.settings import (
    ConfigurationError,
    SyncConfig,
    generate_default_settings,
    load_settings,
    save_settings,
)

# --- App-Metadaten ---
APP_NAME = "Class Spider"
APP_VERSION = "0.1.0"

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_UNCLEAN = 2

_AUTH_ENV = "JAMF_SCHOOL_AUTHORIZATION"

log = logging.getLogger("class_spider")


class _ColorFormatter(logging.Formatter):
    """Färbt den Level-Namen auf der Konsole ein."""

    _COLORS = {
        logging.DEBUG: Fore.CYAN,
        logging.INFO: Fore.GREEN,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.MAGENTA,
    }

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = self._COLORS.get(record.levelno)
        if not color:
            return text
        return text.replace(
            record.levelname, f"{color}{record.levelname}{Style.RESET_ALL}", 1
        )


def _log_file_path(log_cfg: dict) -> Path:
    name = log_cfg.get("file_name") or (
        f"class-spider-{datetime.now():%Y-%m-%d_%H-%M-%S}.log"
    )
    return Path(log_cfg.get("dir_path") or ".") / name


def _setup_logging(settings: dict, verbose: bool = False) -> None:
    """Konfiguriert Logging: optionale Log-Datei plus Konsole.

    Handler eines früheren Aufrufs werden vorher entfernt und geschlossen.
    """
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"
    formatter = logging.Formatter(log_format, datefmt=date_format)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in _setup_logging._handlers:
        root.removeHandler(handler)
        handler.close()
    _setup_logging._handlers = []

    log_cfg = settings.get("log_file", {})
    if log_cfg.get("enabled", True):
        path = _log_file_path(log_cfg)
        path.parent.mkdir(parents=True, exist_ok=True)
        # auto_clear: Datei bei jedem Lauf neu beginnen
        mode = "w" if log_cfg.get("auto_clear", False) else "a"
        file_handler = logging.FileHandler(path, mode=mode, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        _setup_logging._handlers.append(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    colored = settings.get("console", {}).get("colored_output", True)
    if colored and sys.stderr.isatty():
        just_fix_windows_console()
        stream_handler.setFormatter(_ColorFormatter(log_format, datefmt=date_format))
    else:
        stream_handler.setFormatter(formatter)
    _setup_logging._handlers.append(stream_handler)

    for handler in _setup_logging._handlers:
        root.addHandler(handler)

    # urllib3 loggt jede Connection auf DEBUG, das ist nur Noise
    logging.getLogger("urllib3").setLevel(logging.WARNING)


_setup_logging._handlers = []


def _install_exception_hook() -> None:
    """Protokolliert unbehandelte Exceptions, bevor der Prozess endet."""
    original_hook = sys.excepthook

    def hook(exc_type, exc_value, exc_tb):  # noqa: ANN001
        logging.critical(
            "Unbehandelte Exception", exc_info=(exc_type, exc_value, exc_tb)
        )
        original_hook(exc_type, exc_value, exc_tb)

    sys.excepthook = hook


class ProgressReporter:
    """Fortschrittsbalken über die Paare, als on_progress-Callback.

    Der tqdm-Balken entsteht beim ersten Aufruf, weil erst dann die
    Gesamtzahl bekannt ist.
    """

    def __init__(self, width: int = 20, offset: str = "", file=None) -> None:  # noqa: ANN001
        self.width = max(1, width)
        self.offset = offset
        self.file = file
        self._bar: tqdm | None = None

    def __call__(self, done: int, total: int) -> None:
        if self._bar is None:
            self._bar = tqdm(
                total=total,
                desc=self.offset,
                bar_format=f"{{desc}}[{{bar:{self.width}}}] {{percentage:3.0f}}% "
                "({n_fmt}/{total_fmt})",
                file=self.file,
                leave=True,
            )
        self._bar.update(done - self._bar.n)
        if done >= total:
            self.close()

    def close(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None


# --- CLI ---


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="class-spider",
        description="Gleicht Jamf-School-Klassen mit den Klassen-Gruppen ab.",
    )
    parser.add_argument(
        "--settings", default="settings.json", help="Pfad zur settings.json"
    )
    parser.add_argument("--verbose", action="store_true", help="DEBUG auf der Konsole")
    parser.add_argument(
        "--skip-verify", action="store_true", help="Abschlussprüfung überspringen"
    )
    parser.add_argument("--no-progress", action="store_true", help="Keinen Fortschrittsbalken")
    parser.add_argument(
        "--init", action="store_true", help="Leere settings.json anlegen und beenden"
    )

    overrides = parser.add_argument_group("Überschreibungen")
    overrides.add_argument("--authcode", help="API-Zugang als 'Netzwerk-ID:API-Key'")
    overrides.add_argument("--teacher-group-id", type=int)
    overrides.add_argument("--teacher-group-name")
    overrides.add_argument("--log-dir")
    overrides.add_argument("--log-file")
    overrides.add_argument("--no-log-file", action="store_true")
    overrides.add_argument("--progress-bar-width", type=int)
    overrides.add_argument(
        "--save", action="store_true", help="Überschreibungen in die Settings schreiben"
    )
    return parser


def apply_overrides(settings: dict, args: argparse.Namespace) -> bool:
    """Übernimmt CLI-Werte in die Settings. Gibt True zurück, wenn sich etwas änderte."""
    changed = False

    def put(section: str, key: str, value) -> None:  # noqa: ANN001
        nonlocal changed
        settings.setdefault(section, {})[key] = value
        changed = True

    if args.authcode:
        encoded = base64.b64encode(args.authcode.encode("utf-8")).decode("ascii")
        put("api", "authorization", encoded)
    if args.teacher_group_id is not None:
        put("classes", "teacher_group_id", args.teacher_group_id)
    if args.teacher_group_name:
        put("classes", "teacher_group_name", args.teacher_group_name)
    if args.log_dir:
        put("log_file", "dir_path", args.log_dir)
    if args.log_file:
        put("log_file", "file_name", args.log_file)
    if args.no_log_file:
        put("log_file", "enabled", False)
    if args.progress_bar_width is not None:
        put("console", "progress_bar_width", args.progress_bar_width)

    return changed


def apply_environment(settings: dict) -> None:
    """Autorisierung aus der Umgebung, falls die Settings keine enthalten."""
    if not settings.get("api", {}).get("authorization") and os.environ.get(_AUTH_ENV):
        settings.setdefault("api", {})["authorization"] = os.environ[_AUTH_ENV]


def _summarize(report: SyncReport) -> None:
    rec = report.reconcile
    log.info(
        "%d Gruppen, %d Klassen gelöscht, %d angelegt, %d korrigiert, "
        "%d neu aufgebaut, %d unverändert",
        report.valid_groups,
        report.deleted_orphans,
        rec.created,
        rec.patched,
        rec.rebuilt,
        rec.unchanged,
    )
    warnings = len(rec.warnings) + len(report.orphan_warnings)
    if warnings:
        log.warning("%d unerwartete API-Antworten", warnings)
    for name, error in report.orphan_failures:
        log.error("Löschen fehlgeschlagen: %s — %s", name, error)
    for name, error in rec.failures:
        log.error("Fehlgeschlagen: %s — %s", name, error)
    if report.verify is not None and report.verify.errors:
        log.error("Prüfung: %d Klassen stimmen nicht", report.verify.errors)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    # Erststart: Default-Settings schreiben, der Admin füllt sie danach aus
    if args.init:
        if Path(args.settings).exists():
            print(f"{args.settings} existiert bereits.", file=sys.stderr)
            return EXIT_FATAL
        save_settings(generate_default_settings(), args.settings)
        print(f"{args.settings} angelegt.")
        return EXIT_OK

    try:
        settings = load_settings(args.settings)
    except (FileNotFoundError, ValueError) as exc:
        # Logging ist noch nicht eingerichtet
        print(f"Settings konnten nicht geladen werden: {exc}", file=sys.stderr)
        return EXIT_FATAL

    if apply_overrides(settings, args) and args.save:
        save_settings(settings, args.settings)
    # Nach dem Speichern, damit der Schlüssel aus der Umgebung nie in der Datei landet
    apply_environment(settings)

    _setup_logging(settings, args.verbose)
    _install_exception_hook()
    log.info("%s %s", APP_NAME, APP_VERSION)
    classes_cfg = settings.get("classes", {})
    log.info(
        "Lehrergruppe: %s (ID %s)",
        classes_cfg.get("teacher_group_name") or "?",
        classes_cfg.get("teacher_group_id"),
    )

    progress = None
    if not args.no_progress:
        console = settings.get("console", {})
        progress = ProgressReporter(
            width=int(console.get("progress_bar_width", 20)),
            offset=console.get("progress_bar_offset", ""),
        )

    try:
        config = SyncConfig.from_settings(settings)
        client = JamfSchoolClient.from_settings(settings)
        report = synchronize(
            client, config, on_progress=progress, verify_result=not args.skip_verify
        )
    except ConfigurationError as exc:
        log.error("Konfigurationsfehler: %s", exc)
        return EXIT_FATAL
    except InsufficientGroupsError as exc:
        log.error("%s", exc)
        return EXIT_FATAL
    except JamfApiError as exc:
        log.error("Jamf-School-API nicht erreichbar, Lauf abgebrochen: %s", exc)
        return EXIT_FATAL
    finally:
        # Abgebrochener Lauf: Balken trotzdem abschließen
        if progress is not None:
            progress.close()

    _summarize(report)
    return EXIT_OK if report.clean else EXIT_UNCLEAN


if __name__ == "__main__":
    sys.exit(main())
