from __future__ import annotations

import logging
from dataclasses import dataclass

from student_flags.database.record_store import RecordSource, Student
from student_flags.engine.metrics import ASSESSMENT_LABELS, Metric, compute_metric
from student_flags.engine.rules import Category, Condition, FlagRule, format_number


# Tolerance for "equals"; None means exact equality.
EQUALS_TOLERANCE: dict[Category, float | None] = {
    Category.ATTENDANCE: 0.1,
    Category.GRADES: 0.1,
    Category.DISCIPLINE: None,
}
ASSESSMENT_TOLERANCE = 1.0


@dataclass(frozen=True)
class FlagEvaluation:
    is_flagged: bool
    message: str

    def to_dict(self) -> dict[str, object]:
        return {"isFlagged": self.is_flagged, "message": self.message}


NOT_APPLICABLE = FlagEvaluation(is_flagged=False, message="")


def compare(value: float, threshold: float, condition: Condition, category: Category) -> bool:
    if condition is Condition.BELOW:
        return value < threshold
    if condition is Condition.ABOVE:
        return value > threshold

    tolerance = EQUALS_TOLERANCE.get(category, ASSESSMENT_TOLERANCE)
    if tolerance is None:
        return value == threshold
    return abs(value - threshold) < tolerance


def format_message(rule: FlagRule, metric: Metric, threshold: float) -> str:
    condition = rule.condition.value
    limit = format_number(threshold)
    value = metric.value

    if rule.category is Category.ATTENDANCE:
        return f"Attendance rate: {value:.1f}% ({condition} {limit}%)"
    if rule.category is Category.GRADES:
        return f"Current GPA: {value:.2f} ({condition} {limit}) - {metric.sample_size} grades"
    if rule.category is Category.DISCIPLINE:
        count = int(value)
        plural = "" if count == 1 else "s"
        return f"{count} discipline record{plural} ({condition} {limit})"
    label = ASSESSMENT_LABELS[rule.category]
    return f"Latest {label} score: {format_number(value)} ({condition} {limit})"


def evaluate_flag(student: Student, rule: FlagRule, store: RecordSource) -> FlagEvaluation:
    """Evaluate one rule for one student.

    A rule whose grade/class filters exclude the student does not apply and
    yields no message. Missing data yields a not-flagged "No ... data" message.
    Any failure while reading or comparing is logged and treated as not
    flagged, so one bad rule never stops the others.
    """

    if not rule.filters.applies_to(student.grade, student.class_name):
        return NOT_APPLICABLE

    try:
        threshold = rule.threshold_value()
        metric = compute_metric(store, student, rule.category)
        if not metric.has_data:
            return FlagEvaluation(is_flagged=False, message=metric.no_data_message)

        is_flagged = compare(metric.value, threshold, rule.condition, rule.category)
        return FlagEvaluation(is_flagged=is_flagged, message=format_message(rule, metric, threshold))
    except Exception:
        logging.exception("Error evaluating flag %r for student %s", rule.name, student.id)
        return NOT_APPLICABLE
