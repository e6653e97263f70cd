from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from student_flags.database.record_store import RecordKind, RecordSource, Student
from student_flags.engine.identifiers import resolve_student_id
from student_flags.engine.rules import FAST_CATEGORIES, IREADY_CATEGORIES, Category


PRESENT_CODES = frozenset({"present", "p"})

LETTER_POINTS: dict[str, float] = {"A": 4.0, "B": 3.0, "C": 2.0, "D": 1.0, "F": 0.0}

_LEADING_NUMBER = re.compile(r"^\d+(\.\d+)?")

_DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d")

CATEGORY_RECORD_KIND: dict[Category, RecordKind] = {
    Category.ATTENDANCE: RecordKind.ATTENDANCE,
    Category.GRADES: RecordKind.GRADES,
    Category.DISCIPLINE: RecordKind.DISCIPLINE,
    **{c: RecordKind.ASSESSMENTS for c in IREADY_CATEGORIES | FAST_CATEGORIES},
}

ASSESSMENT_LABELS: dict[Category, str] = {
    Category.IREADY_READING: "iReady Reading",
    Category.IREADY_MATH: "iReady Math",
    Category.FAST_MATH: "FAST Math",
    Category.FAST_ELA: "FAST ELA",
    Category.FAST_SCIENCE: "FAST Science",
    Category.FAST_WRITING: "FAST Writing",
}

_FAST_SUBJECTS: dict[Category, tuple[str, ...]] = {
    Category.FAST_MATH: ("Math",),
    Category.FAST_ELA: ("ELA", "Reading"),
    Category.FAST_SCIENCE: ("Science",),
    Category.FAST_WRITING: ("Writing",),
}


@dataclass(frozen=True)
class Metric:
    """One aggregated value for a (student, category) pair.

    ``value`` is None when there is no data; that state is never coerced to 0.
    """

    category: Category
    value: float | None
    sample_size: int = 0
    no_data_message: str = ""

    @property
    def has_data(self) -> bool:
        return self.value is not None


def _no_data(category: Category, message: str) -> Metric:
    return Metric(category=category, value=None, no_data_message=message)


def _numeric_to_gpa(score: float) -> float:
    if score >= 90:
        return 4.0
    if score >= 80:
        return 3.0
    if score >= 70:
        return 2.0
    if score >= 60:
        return 1.0
    return 0.0


def convert_grade_to_gpa(grade: Any) -> float | None:
    """Convert a final grade to grade points, or None when it cannot be read.

    Accepts letters (``"B"``), percentages (``87``, ``"87.5"``) and composite
    strings such as ``"77 C"`` where the leading number wins.
    """

    if grade is None or isinstance(grade, bool):
        return None
    if isinstance(grade, (int, float)):
        return _numeric_to_gpa(float(grade)) if math.isfinite(grade) else None

    text = str(grade).strip().upper()
    if text in LETTER_POINTS:
        return LETTER_POINTS[text]

    match = _LEADING_NUMBER.match(text)
    if match:
        return _numeric_to_gpa(float(match.group()))

    try:
        value = float(text)
    except ValueError:
        return None
    return _numeric_to_gpa(value) if math.isfinite(value) else None


def _naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_test_date(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _naive_utc(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return _naive_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _score(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    return score if math.isfinite(score) else None


def attendance_rate(rows: list[dict[str, Any]]) -> Metric:
    if not rows:
        return _no_data(Category.ATTENDANCE, "No attendance data")
    present = sum(1 for r in rows if str(r.get("status") or "").strip().lower() in PRESENT_CODES)
    return Metric(Category.ATTENDANCE, present / len(rows) * 100, sample_size=len(rows))


def grade_point_average(rows: list[dict[str, Any]]) -> Metric:
    if not rows:
        return _no_data(Category.GRADES, "No grade data")

    points: list[float] = []
    for r in rows:
        gpa = convert_grade_to_gpa(r.get("final_grade"))
        if gpa is None:
            logging.debug("Skipping unparseable grade %r (%s)", r.get("final_grade"), r.get("course"))
            continue
        points.append(gpa)

    if not points:
        return _no_data(Category.GRADES, "No valid grade data for GPA calculation")
    return Metric(Category.GRADES, sum(points) / len(points), sample_size=len(points))


def discipline_count(rows: list[dict[str, Any]]) -> Metric:
    if not rows:
        return _no_data(Category.DISCIPLINE, "No discipline data")
    return Metric(Category.DISCIPLINE, float(len(rows)), sample_size=len(rows))


def matches_assessment(category: Category, source: Any, subject: Any) -> bool:
    source = str(source or "")
    subject = str(subject or "")

    if category is Category.IREADY_READING:
        return source in ("iReady", "iReady Reading") and (subject == "ELA" or "Reading" in subject)
    if category is Category.IREADY_MATH:
        return source in ("iReady", "iReady Math") and "Math" in subject

    if "FAST" not in source:
        return False
    labels = _FAST_SUBJECTS[category]
    if subject:
        return subject in labels
    # older exports carry the subject in the source name, e.g. "FAST Science 5th"
    return any(label in source for label in labels)


def latest_assessment_score(rows: list[dict[str, Any]], category: Category) -> Metric:
    """Score of the most recent matching assessment; undated rows sort last."""

    candidates = [
        r
        for r in rows
        if matches_assessment(category, r.get("source"), r.get("subject")) and _score(r.get("score")) is not None
    ]
    if not candidates:
        return _no_data(category, f"No {ASSESSMENT_LABELS[category]} data")

    def recency(r: dict[str, Any]) -> tuple[bool, datetime]:
        tested = parse_test_date(r.get("test_date"))
        return (tested is not None, tested or datetime.min)

    latest = max(candidates, key=recency)
    return Metric(category, _score(latest.get("score")), sample_size=len(candidates))


def aggregate(category: Category, rows: list[dict[str, Any]]) -> Metric:
    if category is Category.ATTENDANCE:
        return attendance_rate(rows)
    if category is Category.GRADES:
        return grade_point_average(rows)
    if category is Category.DISCIPLINE:
        return discipline_count(rows)
    return latest_assessment_score(rows, category)


def compute_metric(store: RecordSource, student: Student, category: Category) -> Metric:
    kind = CATEGORY_RECORD_KIND[category]
    canonical_id = resolve_student_id(store, student.id, kind)
    return aggregate(category, store.find_records(kind, canonical_id))
