"""Tests for flag grouping, severity and colour reduction."""

import pytest

from student_flags.database.record_store import RecordKind, RecordSnapshot, Student
from student_flags.engine.aggregator import (
    FlagResult,
    determine_severity,
    evaluate_student_flags,
    evaluate_students,
    representative_color,
    summarize_flags,
)
from student_flags.engine.rules import Category, FlagColor


def _flag(color: str, category: Category = Category.ATTENDANCE, message: str = "msg") -> FlagResult:
    return FlagResult(
        flag_id=f"flag_{color}",
        flag_name=color,
        category=category,
        message=message,
        color=FlagColor(color),
        severity="medium",
    )


def test_worst_color_wins():
    flags = [_flag("green"), _flag("red"), _flag("yellow")]
    assert representative_color(flags) is FlagColor.RED


def test_color_ranking_order():
    assert representative_color([_flag("blue"), _flag("green")]) is FlagColor.BLUE
    assert representative_color([_flag("yellow"), _flag("orange")]) is FlagColor.ORANGE
    assert representative_color([]) is None


def test_summaries_reduce_within_category_only():
    flags = {
        Category.ATTENDANCE: [_flag("blue", message="a"), _flag("orange", message="b")],
        Category.DISCIPLINE: [_flag("green", Category.DISCIPLINE, message="c")],
    }
    summary = summarize_flags(flags)

    assert summary[Category.ATTENDANCE].color is FlagColor.ORANGE
    assert summary[Category.ATTENDANCE].message == "a; b"
    assert summary[Category.DISCIPLINE].color is FlagColor.GREEN
    assert len(summary) == 2


@pytest.mark.parametrize(
    "category, threshold, expected",
    [
        ("attendance", 75, "high"),
        ("attendance", 85, "medium"),
        ("attendance", 95, "low"),
        ("discipline", 5, "high"),
        ("discipline", 2, "medium"),
        ("discipline", 1, "low"),
        ("grades", 2.0, "medium"),
        ("fast-ela", 3, "medium"),
        ("attendance", "not-a-number", "medium"),
    ],
)
def test_severity_follows_rule_threshold(make_rule, category, threshold, expected):
    assert determine_severity(make_rule(category, threshold, "below")) == expected


def test_only_active_rules_contribute(seeded_store, make_rule):
    active = make_rule("iready-math", 450, "below", rule_id="active", color="orange")
    inactive = make_rule("iready-math", 500, "below", rule_id="inactive", is_active=False)

    flags = evaluate_student_flags(1, seeded_store, [active, inactive])

    assert list(flags) == [Category.IREADY_MATH]
    assert [f.flag_id for f in flags[Category.IREADY_MATH]] == ["active"]
    result = flags[Category.IREADY_MATH][0]
    assert result.color is FlagColor.ORANGE
    assert result.severity == "medium"
    assert result.message == "Latest iReady Math score: 400 (below 450)"


def test_flags_grouped_by_category(seeded_store, make_rule):
    rules = [
        make_rule("attendance", 90, "below", rule_id="att", color="blue"),
        make_rule("attendance", 85, "below", rule_id="att2", color="red"),
        make_rule("grades", 3.5, "below", rule_id="gpa"),
        make_rule("discipline", 5, "above", rule_id="disc"),
    ]
    flags = evaluate_student_flags(1, seeded_store, rules)

    assert [f.flag_id for f in flags[Category.ATTENDANCE]] == ["att", "att2"]
    assert [f.flag_id for f in flags[Category.GRADES]] == ["gpa"]
    assert Category.DISCIPLINE not in flags
    assert summarize_flags(flags)[Category.ATTENDANCE].color is FlagColor.RED


def test_unknown_student_has_no_flags(seeded_store, make_rule):
    assert evaluate_student_flags(404, seeded_store, [make_rule()]) == {}


def test_bad_rule_does_not_block_others(seeded_store, make_rule):
    rules = [
        make_rule("attendance", "??", "below", rule_id="broken"),
        make_rule("attendance", 90, "below", rule_id="good"),
    ]
    flags = evaluate_student_flags(1, seeded_store, rules)

    assert [f.flag_id for f in flags[Category.ATTENDANCE]] == ["good"]


def test_missing_color_uses_category_default(seeded_store, make_rule):
    flags = evaluate_student_flags(1, seeded_store, [make_rule("attendance", 90, "below", color=None)])
    assert flags[Category.ATTENDANCE][0].color is FlagColor.BLUE


def test_evaluate_students_batches_over_snapshot(seeded_store, make_rule):
    rules = [make_rule("attendance", 60, "below", rule_id="low-att")]

    reports = evaluate_students(seeded_store, rules)

    assert [r.student_id for r in reports] == [12]
    report = reports[0]
    assert report.student_name == "Cai Wong"
    assert report.class_name == "Room 204"
    assert report.flag_count == 1
    payload = report.to_dict()
    assert payload["summary"] == {"attendance": "red"}
    assert payload["flags"]["attendance"][0]["flagId"] == "low-att"


def test_evaluate_students_with_candidate_ids(seeded_store, make_rule):
    rules = [make_rule("attendance", 90, "below")]

    reports = evaluate_students(seeded_store, rules, [1, 2])

    assert [r.student_id for r in reports] == [1]


def test_evaluate_students_without_active_rules(seeded_store, make_rule):
    assert evaluate_students(seeded_store, [make_rule(is_active=False)]) == []


def test_evaluate_students_over_plain_snapshot(make_rule):
    snapshot = RecordSnapshot.build(
        [Student(id="A1", first_name="Eve", grade="2"), Student(id="A2", first_name="Fay", grade="2")],
        {RecordKind.DISCIPLINE: [{"student_id": "A1"}] * 3},
    )
    reports = evaluate_students(snapshot, [make_rule("discipline", 2, "above")])

    assert [r.student_id for r in reports] == ["A1"]
    assert reports[0].class_name == "Not assigned"
