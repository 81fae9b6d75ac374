from __future__ import annotations

import pytest

from core.models import ClassDetail, ClassSummary, Group, Member
from core.settings import SyncConfig

TEACHER_GROUP = 99
MARKER = "Angelegt von Class Spider"


def student(uid: str) -> Member:
    return Member(id=uid, name=f"Schüler {uid}", role_group_ids=[1])


def teacher(uid: str) -> Member:
    return Member(id=uid, name=f"Lehrer {uid}", role_group_ids=[1, TEACHER_GROUP])


def make_config(**overrides) -> SyncConfig:
    values = {
        "class_name_pattern": r"^Class \d+[A-Z]$",
        "ignored_group_description": MARKER,
        "created_class_description": MARKER,
        "teacher_group_id": TEACHER_GROUP,
        "min_valid_group_count": 1,
        "changed_students_limit": 10,
        "changed_teachers_limit": 10,
    }
    values.update(overrides)
    return SyncConfig(**values)


class FakeJamfClient:
    """In-Memory-Verzeichnis, protokolliert alle schreibenden Aufrufe."""

    def __init__(self) -> None:
        self.groups: list[Group] = []
        self.members: dict[int, list[Member]] = {}
        self.classes: dict[str, ClassDetail] = {}
        self.calls: list[tuple] = []
        self.responses: dict[str, str] = {}
        self.refuse_create = False
        self._next_uuid = 1

    # --- Testdaten ---

    def add_group(self, gid: int, name: str, members: list[Member], description: str = "") -> None:
        self.groups.append(Group(gid, name, description, len(members)))
        self.members[gid] = members

    def add_class(self, name: str, students: list[str], teachers: list[str]) -> str:
        uuid = f"uuid-{self._next_uuid}"
        self._next_uuid += 1
        self.classes[uuid] = ClassDetail(
            uuid,
            name,
            students=[Member(id=s) for s in students],
            teachers=[Member(id=t) for t in teachers],
        )
        return uuid

    def members_of(self, name: str) -> tuple[list[str], list[str]]:
        cls = next(c for c in self.classes.values() if c.name == name)
        return [m.id for m in cls.students], [m.id for m in cls.teachers]

    # --- Client-Interface ---

    def get_groups(self) -> list[Group]:
        return list(self.groups)

    def get_group_members(self, group_id: int) -> list[Member]:
        return list(self.members.get(group_id, []))

    def get_classes(self) -> list[ClassSummary]:
        return [ClassSummary(c.id, c.name) for c in self.classes.values()]

    def get_class(self, uuid: str) -> ClassDetail:
        cls = self.classes[uuid]
        return ClassDetail(cls.id, cls.name, list(cls.students), list(cls.teachers))

    def create_class(self, name, student_ids, teacher_ids, description):
        self.calls.append(("create", name, list(student_ids), list(teacher_ids)))
        if self.refuse_create:
            return None
        return self.add_class(name, student_ids, teacher_ids)

    def delete_class(self, uuid):
        self.calls.append(("delete", uuid))
        self.classes.pop(uuid, None)
        return self.responses.get("delete", "ClassDeleted")

    def add_users_to_class(self, uuid, student_ids, teacher_ids):
        self.calls.append(("add", uuid, list(student_ids), list(teacher_ids)))
        cls = self.classes[uuid]
        cls.students += [Member(id=s) for s in student_ids]
        cls.teachers += [Member(id=t) for t in teacher_ids]
        return self.responses.get("add", "ClassSaved")

    def remove_users_from_class(self, uuid, student_ids, teacher_ids):
        self.calls.append(("remove", uuid, list(student_ids), list(teacher_ids)))
        cls = self.classes[uuid]
        cls.students = [m for m in cls.students if m.id not in student_ids]
        cls.teachers = [m for m in cls.teachers if m.id not in teacher_ids]
        return self.responses.get("remove", "ClassUsersDeleted")


@pytest.fixture
def client() -> FakeJamfClient:
    return FakeJamfClient()


@pytest.fixture
def config() -> SyncConfig:
    return make_config()
