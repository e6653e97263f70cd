"""Shared fixtures for the flag engine tests."""

from typing import Any

import pytest

from student_flags.database.db_manager import DBManager
from student_flags.database.record_store import SQLiteRecordStore
from student_flags.engine.rule_store import InMemoryRuleRepository
from student_flags.engine.rules import FlagRule


def _make_rule(
    category: str = "attendance",
    threshold: Any = 90,
    condition: str = "below",
    *,
    rule_id: str | None = None,
    name: str | None = None,
    color: str | None = "red",
    grades: list[str] | None = None,
    classes: list[str] | None = None,
    is_active: bool = True,
) -> FlagRule:
    return FlagRule.from_dict(
        {
            "id": rule_id or f"flag_{category}_{condition}_{threshold}",
            "name": name or f"{category} {condition} {threshold}",
            "category": category,
            "criteria": {"type": category, "threshold": threshold, "condition": condition},
            "filters": {"grades": grades or [], "classes": classes or []},
            "color": color,
            "description": "",
            "isActive": is_active,
            "createdAt": "2024-09-01T08:00:00+00:00",
        }
    )


@pytest.fixture
def make_rule():
    """Factory for FlagRule objects built through the JSON persistence form."""
    return _make_rule


@pytest.fixture
def store(tmp_path):
    """Empty SQLite record store in a temporary directory."""
    dbm = DBManager(tmp_path / "flags.db")
    dbm.init_db()
    return SQLiteRecordStore(dbm)


@pytest.fixture
def seeded_store(store):
    """Store with a few students covering plain and compound id layouts."""
    store.upsert_student(1, first_name="Ana", last_name="Lopez", grade="3", class_name="Room 101")
    store.upsert_student(2, first_name="Ben", last_name="Cole", grade="5", class_name="Room 204")
    store.upsert_student(12, first_name="Cai", last_name="Wong", grade="5", class_name="Room 204")

    # Student 1: 8 present out of 10 days, two discipline incidents
    for day in range(10):
        store.add_attendance(1, f"2024-09-{day + 1:02d}", "present" if day < 8 else "absent")
    store.add_discipline(1, "2024-09-03", "D1", "Disruption")
    store.add_discipline(1, "2024-09-10", "D2", "Tardy pattern")
    store.add_grade(1, "Math", "77 C")
    store.add_grade(1, "Reading", "A")
    store.add_assessment(1, "iReady Math", "Math", 400, "2024-09-15")
    store.add_assessment(1, "iReady Math", "Math", 520, "2024-05-01")

    # Student 2: perfect attendance, no other data
    for day in range(5):
        store.add_attendance(2, f"2024-09-{day + 1:02d}", "present")

    # Student 12: attendance keyed by a compound id, grades by the plain id
    for day in range(4):
        store.add_attendance("sis_12_2024", f"2024-09-{day + 1:02d}", "present" if day < 2 else "absent")
    store.add_grade(12, "Science", "91")
    return store


@pytest.fixture
def rules_repo():
    return InMemoryRuleRepository()
