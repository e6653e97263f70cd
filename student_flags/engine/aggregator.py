from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from student_flags.database.record_store import RecordSource, Student, StudentId
from student_flags.engine.evaluator import evaluate_flag
from student_flags.engine.rules import Category, FlagColor, FlagRule, RuleValidationError


COLOR_SEVERITY: dict[FlagColor, int] = {
    FlagColor.RED: 5,
    FlagColor.ORANGE: 4,
    FlagColor.YELLOW: 3,
    FlagColor.BLUE: 2,
    FlagColor.GREEN: 1,
}


@dataclass(frozen=True)
class FlagResult:
    flag_id: str
    flag_name: str
    category: Category
    message: str
    color: FlagColor
    severity: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "flagId": self.flag_id,
            "flagName": self.flag_name,
            "category": self.category.value,
            "message": self.message,
            "color": self.color.value,
            "severity": self.severity,
        }


@dataclass(frozen=True)
class CategorySummary:
    category: Category
    color: FlagColor
    message: str
    flags: tuple[FlagResult, ...]


@dataclass
class StudentFlagReport:
    student_id: StudentId
    student_name: str
    grade: str | None
    class_name: str
    flags: dict[Category, list[FlagResult]] = field(default_factory=dict)

    @property
    def flag_count(self) -> int:
        return sum(len(v) for v in self.flags.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "studentId": self.student_id,
            "studentName": self.student_name,
            "grade": self.grade,
            "className": self.class_name,
            "flags": {c.value: [f.to_dict() for f in fs] for c, fs in self.flags.items()},
            "summary": {c.value: s.color.value for c, s in summarize_flags(self.flags).items()},
        }


def determine_severity(rule: FlagRule) -> str:
    """Coarse low/medium/high keyed off the rule's threshold, not the measured value."""

    try:
        threshold = rule.threshold_value()
    except RuleValidationError:
        return "medium"

    if rule.category is Category.ATTENDANCE:
        if threshold < 80:
            return "high"
        if threshold < 90:
            return "medium"
        return "low"

    if rule.category is Category.DISCIPLINE:
        if threshold > 3:
            return "high"
        if threshold > 1:
            return "medium"
        return "low"

    return "medium"


def representative_color(flags: Iterable[FlagResult]) -> FlagColor | None:
    """Worst colour wins; None when there are no flags."""
    colors = [f.color for f in flags]
    if not colors:
        return None
    return max(colors, key=lambda c: COLOR_SEVERITY[c])


def summarize_flags(flags_by_category: dict[Category, list[FlagResult]]) -> dict[Category, CategorySummary]:
    # each category reduces to one colour; categories are never merged
    summaries: dict[Category, CategorySummary] = {}
    for category, flags in flags_by_category.items():
        color = representative_color(flags)
        if color is None:
            continue
        summaries[category] = CategorySummary(
            category=category,
            color=color,
            message="; ".join(f.message for f in flags),
            flags=tuple(flags),
        )
    return summaries


def flags_for_student(
    student: Student,
    rules: Iterable[FlagRule],
    store: RecordSource,
) -> dict[Category, list[FlagResult]]:
    flags: dict[Category, list[FlagResult]] = {}
    for rule in rules:
        if not rule.is_active:
            continue
        result = evaluate_flag(student, rule, store)
        if not result.is_flagged:
            continue
        flags.setdefault(rule.category, []).append(
            FlagResult(
                flag_id=rule.id,
                flag_name=rule.name,
                category=rule.category,
                message=result.message,
                color=rule.display_color,
                severity=determine_severity(rule),
            )
        )
    return flags


def evaluate_student_flags(
    student_id: StudentId,
    store: RecordSource,
    rules: Iterable[FlagRule],
) -> dict[Category, list[FlagResult]]:
    """All matched flags for one student, grouped by category. Inactive rules are ignored."""

    student = store.get_student(student_id)
    if student is None:
        logging.info("Student %s not found; no flags evaluated", student_id)
        return {}
    return flags_for_student(student, rules, store)


def evaluate_students(
    store: RecordSource,
    rules: Iterable[FlagRule],
    student_ids: Iterable[StudentId] | None = None,
) -> list[StudentFlagReport]:
    """Flag reports for every flagged student in the candidate set.

    When the store can take a snapshot, all raw records for the candidates
    are fetched in one batch and evaluation then runs over local data.
    """

    active = [r for r in rules if r.is_active]
    if not active:
        return []

    ids = None if student_ids is None else list(student_ids)
    snapshot = getattr(store, "snapshot", None)
    source: RecordSource = snapshot(ids) if callable(snapshot) else store

    if ids is None:
        students = source.list_students()
    else:
        students = [s for s in (source.get_student(sid) for sid in ids) if s is not None]

    reports: list[StudentFlagReport] = []
    for student in students:
        flags = flags_for_student(student, active, source)
        if not flags:
            continue
        reports.append(
            StudentFlagReport(
                student_id=student.id,
                student_name=student.full_name,
                grade=student.grade,
                class_name=student.class_name or "Not assigned",
                flags=flags,
            )
        )

    logging.info("Found %s flagged students out of %s", len(reports), len(students))
    return reports
