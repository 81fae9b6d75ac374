from __future__ import annotations

import logging
import re

from core.models import (
    ClassDetail,
    ClassSummary,
    Correction,
    Group,
    GroupClassPair,
    Member,
    MembershipDiff,
)
from core.settings import ConfigurationError, SyncConfig

log = logging.getLogger(__name__)


class InsufficientGroupsError(Exception):
    """Zu wenige gültige Gruppen — Schutz vor Massenlöschung von Klassen."""

    def __init__(self, found: int, minimum: int) -> None:
        self.found = found
        self.minimum = minimum
        super().__init__(
            f"Nur {found} gültige Gruppen gefunden (Minimum: {minimum}). "
            "Falls das korrekt ist, 'min_valid_group_count' in den Settings senken."
        )


def filter_valid_groups(groups: list[Group], config: SyncConfig) -> list[Group]:
    """Wählt die Gruppen aus, für die eine Klasse existieren soll.

    Eine Gruppe ist gültig, wenn ihre Beschreibung nicht die Markierung
    selbst angelegter Klassen ist, ihr Name auf das Klassen-Muster (oder das
    alternative Muster) passt und sie, falls gefordert, Mitglieder hat.
    """
    if not config.ignored_group_description:
        raise ConfigurationError("Beschreibung für ignorierte Gruppen fehlt.")
    if not config.class_name_pattern:
        raise ConfigurationError("class_name_pattern fehlt.")

    name_re = re.compile(config.class_name_pattern)
    alt_re = re.compile(config.alt_name_pattern) if config.alt_name_pattern else None

    valid: list[Group] = []
    for group in groups:
        if group.description == config.ignored_group_description:
            continue
        # search statt match: gleiches Verhalten wie RegExp.test
        if not name_re.search(group.name) and not (alt_re and alt_re.search(group.name)):
            continue
        if config.require_members and group.member_count <= 0:
            continue
        valid.append(group)

    if len(valid) < config.min_valid_group_count:
        raise InsufficientGroupsError(len(valid), config.min_valid_group_count)

    log.info("%d von %d Gruppen sind Klassen-Gruppen", len(valid), len(groups))
    return valid


def pair_groups_with_classes(
    groups: list[Group], classes: list[ClassSummary]
) -> tuple[list[GroupClassPair], list[ClassSummary]]:
    """Ordnet jeder Gruppe die Klasse mit identischem Namen zu.

    Returns: (Paare in Gruppen-Reihenfolge, übrig gebliebene Klassen).
    Jede Klasse wird höchstens einmal vergeben. Bei doppelten Klassennamen
    gewinnt die erste in Listenreihenfolge, die übrigen bleiben als Waisen.
    """
    by_name: dict[str, list[ClassSummary]] = {}
    for cls in classes:
        by_name.setdefault(cls.name, []).append(cls)

    for name, same_name in by_name.items():
        if len(same_name) > 1:
            log.warning("%d Klassen heißen '%s'", len(same_name), name)

    consumed: set[str] = set()
    pairs: list[GroupClassPair] = []
    for group in groups:
        candidates = by_name.get(group.name)
        class_id = None
        if candidates:
            match = candidates.pop(0)
            consumed.add(match.id)
            class_id = match.id
        pairs.append(GroupClassPair(group.name, group.id, class_id))

    orphans = [c for c in classes if c.id not in consumed]
    return pairs, orphans


def split_by_role(
    members: list[Member], teacher_group_id: int
) -> tuple[list[str], list[str]]:
    """Teilt Gruppenmitglieder in (Schüler-IDs, Lehrer-IDs)."""
    students: list[str] = []
    teachers: list[str] = []
    seen: set[str] = set()
    for member in members:
        if member.id in seen:
            continue
        seen.add(member.id)
        if member.is_teacher(teacher_group_id):
            teachers.append(member.id)
        else:
            students.append(member.id)
    return students, teachers


def compute_membership_diff(
    detail: ClassDetail, group_members: list[Member], teacher_group_id: int
) -> MembershipDiff:
    """Vergleicht Klassenmitglieder (IST) mit Gruppenmitgliedern (SOLL).

    Gefundene Mitglieder werden aus Arbeitskopien der Klassen-Listen
    entfernt; was danach übrig ist, gehört nicht in die Klasse.
    """
    # Arbeitskopien, indexiert nach ID (Einfüge-Reihenfolge bleibt erhalten)
    remaining = {
        "student": {m.id: m for m in detail.students},
        "teacher": {m.id: m for m in detail.teachers},
    }
    missing: dict[str, list[str]] = {"student": [], "teacher": []}
    seen: set[str] = set()

    for member in group_members:
        if member.id in seen:
            continue
        seen.add(member.id)

        role = "teacher" if member.is_teacher(teacher_group_id) else "student"
        if remaining[role].pop(member.id, None) is None:
            missing[role].append(member.id)

    return MembershipDiff(
        missing_student_ids=missing["student"],
        missing_teacher_ids=missing["teacher"],
        extra_student_ids=list(remaining["student"]),
        extra_teacher_ids=list(remaining["teacher"]),
    )


def classify_correction(
    diff: MembershipDiff, changed_students_limit: int, changed_teachers_limit: int
) -> Correction:
    """Patch oder Neuaufbau? Grenzwerte sind exklusiv (erst > Limit → Neuaufbau)."""
    if diff.is_empty:
        return Correction.NOOP
    if (
        diff.changed_students > changed_students_limit
        or diff.changed_teachers > changed_teachers_limit
    ):
        return Correction.REBUILD
    return Correction.PATCH
