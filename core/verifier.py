from __future__ import annotations

import logging

from core.engine import filter_valid_groups
from core.jamf_client import JamfSchoolClient
from core.models import Member, VerifyResult
from core.settings import SyncConfig

log = logging.getLogger(__name__)


def count_discrepancies(class_members: list[Member], group_members: list[Member]) -> int:
    """Anzahl der IDs, die nur in der Klasse oder nur in der Gruppe vorkommen.

    Rollen spielen hier keine Rolle, nur die Gesamtmitgliedschaft.
    """
    remaining = {m.id: m for m in class_members}
    missing = 0
    seen: set[str] = set()
    for member in group_members:
        if member.id in seen:
            continue
        seen.add(member.id)
        if remaining.pop(member.id, None) is None:
            missing += 1
    return missing + len(remaining)


def verify(client: JamfSchoolClient, config: SyncConfig) -> VerifyResult:
    """Liest den Endzustand neu ein und zählt fehlerhafte Gruppen.

    Fehlerhaft ist eine Gruppe ohne Klasse gleichen Namens oder mit einer
    Klasse, deren Mitglieder abweichen. Ändert nichts. Jede Gruppe zählt
    höchstens einen Fehler, egal wie viele Mitglieder abweichen.
    """
    groups = filter_valid_groups(client.get_groups(), config)
    classes = {}
    for cls in client.get_classes():
        classes.setdefault(cls.name, cls)

    result = VerifyResult()
    for group in groups:
        result.checked += 1
        cls = classes.get(group.name)
        if cls is None:
            log.warning("Prüfung: keine Klasse für Gruppe '%s'", group.name)
            result.missing_classes.append(group.name)
            continue

        detail = client.get_class(cls.id)
        members = client.get_group_members(group.id)
        diff = count_discrepancies(detail.students + detail.teachers, members)
        if diff:
            log.warning(
                "Prüfung: Klasse '%s' weicht um %d Mitglieder ab", group.name, diff
            )
            result.mismatches[group.name] = diff

    if result.errors:
        log.warning("Prüfung: %d Fehler bei %d Gruppen", result.errors, result.checked)
    else:
        log.info("Prüfung: alle %d Klassen stimmen", result.checked)
    return result
