"""Jamf School REST API Client — Gruppen, Benutzer und Klassen."""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from core.models import ClassDetail, ClassSummary, Group, Member
from core.settings import ConfigurationError

log = logging.getLogger(__name__)

_MAX_RETRIES = 5
_DEFAULT_RETRY_DELAY = 1.0  # Sekunden

# Erwartete Bestätigungen der API
CLASS_DELETED = "ClassDeleted"
CLASS_SAVED = "ClassSaved"
CLASS_USERS_DELETED = "ClassUsersDeleted"


class JamfApiError(Exception):
    """Fehler bei Jamf-School-API-Aufrufen."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TransportExhaustedError(JamfApiError):
    """Alle Versuche eines API-Aufrufs sind fehlgeschlagen."""


class JamfSchoolClient:
    """HTTP-Client für die Jamf School API (Basic Auth, Protokoll-Version 3)."""

    def __init__(
        self,
        authorization: str,
        base_url: str = "https://api.zuludesk.com",
        max_retries: int = _MAX_RETRIES,
        timeout: float = 30,
        retry_delay: float = _DEFAULT_RETRY_DELAY,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._max_retries = max(1, max_retries)
        self._timeout = timeout
        self._retry_delay = retry_delay
        self._session = session or requests.Session()
        self._session.headers["Authorization"] = f"Basic {authorization}"
        self._session.headers["X-Server-Protocol-Version"] = "3"

    @classmethod
    def from_settings(cls, settings: dict) -> JamfSchoolClient:
        api = settings.get("api", {})
        if not api.get("authorization"):
            raise ConfigurationError("Keine API-Autorisierung gesetzt (api.authorization).")
        return cls(
            authorization=api.get("authorization", ""),
            base_url=api.get("base_url") or "https://api.zuludesk.com",
            max_retries=int(api.get("max_retries", _MAX_RETRIES)),
            timeout=float(api.get("timeout", 30)),
            retry_delay=float(api.get("retry_delay", _DEFAULT_RETRY_DELAY)),
        )

    # --- HTTP-Kern ---

    def _send(
        self,
        method: str,
        path: str,
        json: dict | None = None,
        params: dict | None = None,
    ) -> dict:
        """Ein einzelner Request. Alles außer HTTP 200 + JSON-Objekt ist ein Fehler."""
        url = f"{self._base_url}{path}"
        log.debug("%s %s params=%s", method, url, params)
        resp = self._session.request(
            method, url, json=json, params=params, timeout=self._timeout
        )
        log.debug("Response: %s %s", resp.status_code, method)

        if resp.status_code != 200:
            raise JamfApiError(
                f"HTTP {resp.status_code}: {resp.text[:200]}", resp.status_code
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise JamfApiError(f"Ungültiges JSON: {exc}", resp.status_code) from exc
        if not isinstance(data, dict):
            raise JamfApiError("Leere oder unerwartete Antwort", resp.status_code)
        return data

    def _request(
        self,
        method: str,
        path: str,
        key: str,
        json: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        """Sendet einen Request mit Retry und gibt ``data[key]`` zurück."""
        last_error: Exception | None = None

        for attempt in range(self._max_retries):
            try:
                data = self._send(method, path, json=json, params=params)
                if key not in data:
                    raise JamfApiError(f"Eigenschaft '{key}' fehlt in der Antwort")
                return data[key]
            except (requests.RequestException, JamfApiError) as exc:
                last_error = exc
                log.warning(
                    "%s %s fehlgeschlagen (Versuch %d/%d): %s",
                    method,
                    path,
                    attempt + 1,
                    self._max_retries,
                    exc,
                )
                if attempt < self._max_retries - 1 and self._retry_delay > 0:
                    time.sleep(self._retry_delay)

        status = getattr(last_error, "status_code", None)
        raise TransportExhaustedError(
            f"{method} {path}: {self._max_retries} Versuche fehlgeschlagen ({last_error})",
            status,
        )

    # --- Gruppen + Benutzer ---

    def get_groups(self) -> list[Group]:
        """Holt alle Benutzergruppen."""
        groups = self._request("GET", "/users/groups", "groups")
        return [
            Group(
                id=int(g["id"]),
                name=g.get("name") or "",
                description=g.get("description") or "",
                member_count=int(g.get("userCount") or 0),
            )
            for g in groups
        ]

    def get_group_members(self, group_id: int | None = None) -> list[Member]:
        """Holt alle Mitglieder einer Gruppe. Ohne group_id: alle Benutzer."""
        params = {"memberOf": group_id} if group_id is not None else None
        users = self._request("GET", "/users", "users", params=params)
        return [_member_from_api(u) for u in users]

    # --- Klassen ---

    def get_classes(self) -> list[ClassSummary]:
        """Holt die Liste aller Klassen (ohne Mitglieder)."""
        classes = self._request("GET", "/classes", "classes")
        return [ClassSummary(id=c["uuid"], name=c.get("name") or "") for c in classes]

    def get_class(self, uuid: str) -> ClassDetail:
        """Holt eine Klasse mit Schüler- und Lehrerlisten."""
        cls = self._request("GET", f"/classes/{uuid}", "class")
        return ClassDetail(
            id=cls.get("uuid", uuid),
            name=cls.get("name") or "",
            students=[_member_from_api(u) for u in cls.get("students") or []],
            teachers=[_member_from_api(u) for u in cls.get("teachers") or []],
        )

    def class_exists(self, name: str) -> bool:
        return any(c.name == name for c in self.get_classes())

    def create_class(
        self,
        name: str,
        student_ids: list[str],
        teacher_ids: list[str],
        description: str,
    ) -> str | None:
        """Legt eine Klasse an und gibt ihre uuid zurück.

        Gibt None zurück, wenn der Name leer ist, keine Mitglieder übergeben
        wurden oder die Klasse nach einem fehlgeschlagenen Versuch bereits
        existiert (Namenskollision).
        """
        if not name:
            log.warning("Klasse ohne Namen kann nicht angelegt werden")
            return None
        if not student_ids and not teacher_ids:
            log.warning("Klasse '%s' nicht angelegt: keine Mitglieder", name)
            return None
        if not teacher_ids:
            log.warning("Klasse '%s' wird ohne Lehrer angelegt", name)
        if not student_ids:
            log.warning("Klasse '%s' wird ohne Schüler angelegt", name)

        payload = {
            "name": name,
            "description": description,
            "students": student_ids,
            "teachers": teacher_ids,
        }
        last_error: Exception | None = None

        for attempt in range(self._max_retries):
            try:
                # Ein früherer Versuch kann serverseitig durchgegangen sein
                if attempt and self.class_exists(name):
                    log.warning("Klasse '%s' existiert bereits", name)
                    return None
                data = self._send("POST", "/classes", json=payload)
                if "uuid" not in data:
                    raise JamfApiError("Eigenschaft 'uuid' fehlt in der Antwort")
                return data["uuid"]
            except (requests.RequestException, JamfApiError) as exc:
                if isinstance(exc, TransportExhaustedError):
                    raise
                last_error = exc
                log.warning(
                    "Klasse '%s' anlegen fehlgeschlagen (Versuch %d/%d): %s",
                    name,
                    attempt + 1,
                    self._max_retries,
                    exc,
                )
                if attempt < self._max_retries - 1 and self._retry_delay > 0:
                    time.sleep(self._retry_delay)

        raise TransportExhaustedError(
            f"Klasse '{name}' konnte nicht angelegt werden ({last_error})",
            getattr(last_error, "status_code", None),
        )

    def delete_class(self, uuid: str) -> str:
        """Löscht eine Klasse. Erwartete Antwort: 'ClassDeleted'."""
        if not uuid:
            raise JamfApiError("Klasse löschen: uuid fehlt")
        return self._request("DELETE", f"/classes/{uuid}", "message")

    def add_users_to_class(
        self, uuid: str, student_ids: list[str], teacher_ids: list[str]
    ) -> str:
        """Fügt Schüler und Lehrer hinzu. Erwartete Antwort: 'ClassSaved'."""
        if not uuid:
            raise JamfApiError("Mitglieder hinzufügen: uuid fehlt")
        return self._request(
            "PUT",
            f"/classes/{uuid}/users",
            "message",
            json={"students": student_ids, "teachers": teacher_ids},
        )

    def remove_users_from_class(
        self, uuid: str, student_ids: list[str], teacher_ids: list[str]
    ) -> str | None:
        """Entfernt Schüler und Lehrer. Erwartete Antwort: 'ClassUsersDeleted'.

        Die IDs gehen kommagetrennt in die Query (``?students=1,2&teachers=3``).
        """
        if not uuid:
            raise JamfApiError("Mitglieder entfernen: uuid fehlt")
        if not student_ids and not teacher_ids:
            log.warning("Klasse %s: 0 Mitglieder zum Entfernen übergeben", uuid)
            return None

        params: dict[str, str] = {}
        if student_ids:
            params["students"] = ",".join(student_ids)
        if teacher_ids:
            params["teachers"] = ",".join(teacher_ids)
        return self._request(
            "DELETE", f"/classes/{uuid}/users", "message", params=params
        )


def _member_from_api(user: dict) -> Member:
    return Member(
        id=str(user["id"]),
        name=user.get("name") or "",
        role_group_ids=[int(g) for g in user.get("groupIds") or []],
    )
