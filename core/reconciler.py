"""Abgleich aller Gruppen-Klassen-Paare und der komplette Sync-Lauf."""

from __future__ import annotations

import logging
from typing import Callable

from core.engine import (
    classify_correction,
    compute_membership_diff,
    filter_valid_groups,
    pair_groups_with_classes,
    split_by_role,
)
from core.jamf_client import (
    CLASS_DELETED,
    CLASS_SAVED,
    CLASS_USERS_DELETED,
    JamfApiError,
    JamfSchoolClient,
)
from core.models import (
    ClassSummary,
    Correction,
    GroupClassPair,
    PairOutcome,
    ReconcileResult,
    SyncReport,
    UnexpectedConfirmation,
)
from core.settings import SyncConfig
from core.verifier import verify

log = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class Reconciler:
    """Legt fehlende Klassen an und korrigiert bestehende (Patch oder Neuaufbau)."""

    def __init__(self, client: JamfSchoolClient, config: SyncConfig) -> None:
        self.client = client
        self.config = config

    def run(
        self,
        pairs: list[GroupClassPair],
        on_progress: ProgressCallback | None = None,
    ) -> ReconcileResult:
        result = ReconcileResult()
        total = len(pairs)

        for done, pair in enumerate(pairs, start=1):
            try:
                outcome = self.reconcile_pair(pair, result)
            except JamfApiError as exc:
                if self.config.stop_on_error:
                    raise
                log.error("Klasse '%s' fehlgeschlagen: %s", pair.group_name, exc)
                result.failures.append((pair.group_name, str(exc)))
                outcome = PairOutcome.FAILED
            result.count(outcome)

            if on_progress is not None:
                on_progress(done, total)

        log.info(
            "Abgleich: %d angelegt, %d nicht angelegt, %d korrigiert, "
            "%d neu aufgebaut, %d unverändert, %d fehlgeschlagen",
            result.created,
            result.not_created,
            result.patched,
            result.rebuilt,
            result.unchanged,
            len(result.failures),
        )
        return result

    def reconcile_pair(
        self, pair: GroupClassPair, result: ReconcileResult
    ) -> PairOutcome:
        if pair.class_id is None:
            return self._create(pair)

        detail = self.client.get_class(pair.class_id)
        members = self.client.get_group_members(pair.group_id)
        diff = compute_membership_diff(detail, members, self.config.teacher_group_id)
        decision = classify_correction(
            diff,
            self.config.changed_students_limit,
            self.config.changed_teachers_limit,
        )

        if decision is Correction.NOOP:
            return PairOutcome.UNCHANGED

        if decision is Correction.REBUILD:
            log.info(
                "Klasse '%s' wird neu aufgebaut (%d Schüler, %d Lehrer geändert)",
                pair.group_name,
                diff.changed_students,
                diff.changed_teachers,
            )
            response = self.client.delete_class(pair.class_id)
            self._check(response, CLASS_DELETED, pair.group_name, "delete", result)
            if self._create(pair) is PairOutcome.NOT_CREATED:
                return PairOutcome.NOT_CREATED
            return PairOutcome.REBUILT

        log.info(
            "Klasse '%s': +%d/-%d Schüler, +%d/-%d Lehrer",
            pair.group_name,
            len(diff.missing_student_ids),
            len(diff.extra_student_ids),
            len(diff.missing_teacher_ids),
            len(diff.extra_teacher_ids),
        )
        # Erst entfernen, dann hinzufügen (Rollenwechsel!)
        if diff.has_extra:
            response = self.client.remove_users_from_class(
                pair.class_id, diff.extra_student_ids, diff.extra_teacher_ids
            )
            self._check(
                response, CLASS_USERS_DELETED, pair.group_name, "remove_users", result
            )
        if diff.has_missing:
            response = self.client.add_users_to_class(
                pair.class_id, diff.missing_student_ids, diff.missing_teacher_ids
            )
            self._check(response, CLASS_SAVED, pair.group_name, "add_users", result)
        return PairOutcome.PATCHED

    def _create(self, pair: GroupClassPair) -> PairOutcome:
        members = self.client.get_group_members(pair.group_id)
        students, teachers = split_by_role(members, self.config.teacher_group_id)
        uuid = self.client.create_class(
            pair.group_name, students, teachers, self.config.created_class_description
        )
        if uuid is None:
            log.warning("Klasse '%s' wurde nicht angelegt", pair.group_name)
            return PairOutcome.NOT_CREATED
        log.info(
            "Klasse '%s' angelegt (%d Schüler, %d Lehrer)",
            pair.group_name,
            len(students),
            len(teachers),
        )
        return PairOutcome.CREATED

    @staticmethod
    def _check(
        response: str | None,
        expected: str,
        class_name: str,
        action: str,
        result: ReconcileResult,
    ) -> None:
        if response == expected:
            return
        log.warning(
            "Antwort '%s' statt '%s' bei %s für Klasse '%s'",
            response,
            expected,
            action,
            class_name,
        )
        result.warnings.append(
            UnexpectedConfirmation(class_name, action, expected, response)
        )


def delete_orphans(
    client: JamfSchoolClient,
    orphans: list[ClassSummary],
    stop_on_error: bool = True,
) -> tuple[int, list[UnexpectedConfirmation], list[tuple[str, str]]]:
    """Löscht alle Klassen ohne passende Gruppe.

    Returns: (Anzahl gelöschter Klassen, weiche Warnungen, Fehlschläge).
    Fehlschläge werden nur gesammelt, wenn stop_on_error aus ist.
    """
    deleted = 0
    warnings: list[UnexpectedConfirmation] = []
    failures: list[tuple[str, str]] = []
    for cls in orphans:
        try:
            response = client.delete_class(cls.id)
        except JamfApiError as exc:
            if stop_on_error:
                raise
            log.error("Klasse '%s' konnte nicht gelöscht werden: %s", cls.name, exc)
            failures.append((cls.name, str(exc)))
            continue
        deleted += 1
        if response != CLASS_DELETED:
            log.warning(
                "Antwort '%s' beim Löschen der Klasse '%s'", response, cls.name
            )
            warnings.append(
                UnexpectedConfirmation(cls.name, "delete", CLASS_DELETED, response)
            )
        else:
            log.info("Klasse '%s' ohne Gruppe gelöscht", cls.name)
    return deleted, warnings, failures


def synchronize(
    client: JamfSchoolClient,
    config: SyncConfig,
    on_progress: ProgressCallback | None = None,
    verify_result: bool = True,
) -> SyncReport:
    """Kompletter Lauf: filtern, pairen, Waisen löschen, abgleichen, prüfen."""
    report = SyncReport()

    # Nur lesend bis hier — Konfigurations- und Mindestanzahl-Fehler brechen vorher ab
    groups = filter_valid_groups(client.get_groups(), config)
    report.valid_groups = len(groups)
    classes = client.get_classes()
    pairs, orphans = pair_groups_with_classes(groups, classes)
    log.info(
        "%d Klassen vorhanden, %d davon ohne Gruppe", len(classes), len(orphans)
    )

    (
        report.deleted_orphans,
        report.orphan_warnings,
        report.orphan_failures,
    ) = delete_orphans(client, orphans, config.stop_on_error)
    report.reconcile = Reconciler(client, config).run(pairs, on_progress)

    if verify_result:
        report.verify = verify(client, config)
    return report
