from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass
class Group:
    """Benutzergruppe im Jamf-School-Verzeichnis (Quelle der Wahrheit)."""

    id: int
    name: str
    description: str = ""
    member_count: int = 0


@dataclass
class ClassSummary:
    """Minimale Klassen-Identität aus der Klassenliste (für das Pairing)."""

    id: str  # uuid der Klasse
    name: str


@dataclass
class Member:
    """Verzeichnis-Benutzer. Die Rolle ergibt sich aus role_group_ids."""

    id: str
    name: str = ""
    role_group_ids: list[int] = field(default_factory=list)

    def is_teacher(self, teacher_group_id: int) -> bool:
        return teacher_group_id in self.role_group_ids


@dataclass
class ClassDetail:
    """Klasse mit vollständiger Mitgliedschaft (wird pro Paar nachgeladen)."""

    id: str
    name: str
    students: list[Member] = field(default_factory=list)
    teachers: list[Member] = field(default_factory=list)


@dataclass
class GroupClassPair:
    """Arbeitseinheit des Reconcilers. class_id None → Klasse muss angelegt werden."""

    group_name: str
    group_id: int
    class_id: str | None = None


@dataclass
class MembershipDiff:
    """Unterschied zwischen Klassen- und Gruppenmitgliedschaft (IDs als Strings)."""

    missing_student_ids: list[str] = field(default_factory=list)
    missing_teacher_ids: list[str] = field(default_factory=list)
    extra_student_ids: list[str] = field(default_factory=list)
    extra_teacher_ids: list[str] = field(default_factory=list)

    @property
    def changed_students(self) -> int:
        return len(self.missing_student_ids) + len(self.extra_student_ids)

    @property
    def changed_teachers(self) -> int:
        return len(self.missing_teacher_ids) + len(self.extra_teacher_ids)

    @property
    def has_missing(self) -> bool:
        return bool(self.missing_student_ids or self.missing_teacher_ids)

    @property
    def has_extra(self) -> bool:
        return bool(self.extra_student_ids or self.extra_teacher_ids)

    @property
    def is_empty(self) -> bool:
        return self.changed_students + self.changed_teachers == 0


class Correction(Enum):
    """Entscheidung des Klassifizierers pro Klasse."""

    NOOP = "noop"
    PATCH = "patch"
    REBUILD = "rebuild"


class PairOutcome(Enum):
    """Endzustand eines Paares nach dem Abgleich."""

    CREATED = "created"
    NOT_CREATED = "not_created"
    UNCHANGED = "unchanged"
    PATCHED = "patched"
    REBUILT = "rebuilt"
    FAILED = "failed"


@dataclass
class UnexpectedConfirmation:
    """Weiche Warnung: API hat nicht mit dem erwarteten Token bestätigt."""

    class_name: str
    action: str  # "delete", "add_users", "remove_users"
    expected: str
    received: str | None


@dataclass
class ReconcileResult:
    """Ergebnis des Reconcilers über alle Paare."""

    created: int = 0
    not_created: int = 0
    patched: int = 0
    rebuilt: int = 0
    unchanged: int = 0
    warnings: list[UnexpectedConfirmation] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)  # (Klasse, Fehler)

    def count(self, outcome: PairOutcome) -> None:
        if outcome is PairOutcome.CREATED:
            self.created += 1
        elif outcome is PairOutcome.NOT_CREATED:
            self.not_created += 1
        elif outcome is PairOutcome.PATCHED:
            self.patched += 1
        elif outcome is PairOutcome.REBUILT:
            self.rebuilt += 1
        elif outcome is PairOutcome.UNCHANGED:
            self.unchanged += 1


@dataclass
class VerifyResult:
    """Ergebnis der Verifikation. Gezählt wird pro Gruppe, nicht pro Mitglied."""

    checked: int = 0
    missing_classes: list[str] = field(default_factory=list)
    mismatches: dict[str, int] = field(default_factory=dict)  # Klasse → Abweichungen

    @property
    def errors(self) -> int:
        return len(self.missing_classes) + len(self.mismatches)


@dataclass
class SyncReport:
    """Gesamtergebnis eines Sync-Laufs."""

    valid_groups: int = 0
    deleted_orphans: int = 0
    orphan_warnings: list[UnexpectedConfirmation] = field(default_factory=list)
    orphan_failures: list[tuple[str, str]] = field(default_factory=list)
    reconcile: ReconcileResult = field(default_factory=ReconcileResult)
    verify: VerifyResult | None = None

    @property
    def clean(self) -> bool:
        if self.reconcile.failures or self.orphan_failures:
            return False
        return self.verify is None or self.verify.errors == 0
