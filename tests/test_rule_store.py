"""Tests for rule parsing and the rule repositories."""

import json

import pytest

from student_flags.engine.rule_store import InMemoryRuleRepository, JsonRuleRepository, RuleNotFoundError
from student_flags.engine.rules import (
    CATEGORY_PARAMETERS,
    Category,
    Condition,
    FlagColor,
    FlagRule,
    RuleValidationError,
    describe_rule,
    form_defaults,
)


def test_create_assigns_defaults(rules_repo):
    rule = rules_repo.create_rule(name="Chronic absence", category="attendance", threshold=90, condition="below")

    assert rule.id.startswith("flag_")
    assert rule.created_at
    assert rule.is_active is True
    assert rule.description.startswith("Flag students when Attendance is below 90%.")
    assert rules_repo.list_rules() == [rule]


def test_create_ids_are_unique(rules_repo):
    first = rules_repo.create_rule(name="a", category=Category.GRADES, threshold=2.0, condition=Condition.BELOW)
    second = rules_repo.create_rule(name="b", category=Category.GRADES, threshold=2.0, condition=Condition.BELOW)

    assert first.id != second.id


def test_create_rejects_non_numeric_threshold(rules_repo):
    with pytest.raises(RuleValidationError, match="non-numeric threshold"):
        rules_repo.create_rule(name="bad", category="grades", threshold="high", condition="below")
    assert rules_repo.list_rules() == []


def test_create_rejects_unknown_category(rules_repo):
    with pytest.raises(RuleValidationError, match="Unknown category"):
        rules_repo.create_rule(name="bad", category="behavior", threshold=1, condition="above")


def test_update_replaces_by_id(rules_repo):
    rule = rules_repo.create_rule(name="GPA", category="grades", threshold=2.0, condition="below")
    rules_repo.update_rule(rule.with_changes(name="GPA watch"))

    assert rules_repo.get_rule(rule.id).name == "GPA watch"


def test_toggle_flips_active(rules_repo):
    rule = rules_repo.create_rule(name="GPA", category="grades", threshold=2.0, condition="below")

    assert rules_repo.toggle_rule(rule.id).is_active is False
    assert rules_repo.list_active_rules() == []
    assert rules_repo.toggle_rule(rule.id).is_active is True


def test_delete_removes_rule(rules_repo):
    keep = rules_repo.create_rule(name="keep", category="discipline", threshold=2, condition="above")
    drop = rules_repo.create_rule(name="drop", category="discipline", threshold=5, condition="above")

    rules_repo.delete_rule(drop.id)

    assert [r.id for r in rules_repo.list_rules()] == [keep.id]


def test_unknown_ids_raise(rules_repo, make_rule):
    with pytest.raises(RuleNotFoundError):
        rules_repo.delete_rule("missing")
    with pytest.raises(RuleNotFoundError):
        rules_repo.toggle_rule("missing")
    with pytest.raises(RuleNotFoundError):
        rules_repo.update_rule(make_rule(rule_id="missing"))
    with pytest.raises(RuleNotFoundError):
        rules_repo.get_rule("missing")


def test_json_repository_persists_camel_case_array(tmp_path):
    path = tmp_path / "rules" / "flag_rules.json"
    repo = JsonRuleRepository(path)
    rule = repo.create_rule(
        name="Low reading",
        category="iready-reading",
        threshold="450",
        condition="below",
        grades=["3", "4"],
        color="yellow",
    )

    stored = json.loads(path.read_text(encoding="utf-8"))
    assert stored == [
        {
            "id": rule.id,
            "name": "Low reading",
            "category": "iready-reading",
            "criteria": {"type": "", "threshold": "450", "condition": "below"},
            "filters": {"grades": ["3", "4"], "classes": []},
            "color": "yellow",
            "description": rule.description,
            "isActive": True,
            "createdAt": rule.created_at,
        }
    ]
    assert JsonRuleRepository(path).list_rules() == [rule]


def test_json_repository_missing_file_is_empty(tmp_path):
    assert JsonRuleRepository(tmp_path / "nope.json").list_rules() == []


def test_json_repository_keeps_unreadable_entries(tmp_path):
    path = tmp_path / "flag_rules.json"
    broken = {"id": "old", "name": "Legacy", "category": "behavior", "criteria": {"threshold": 1, "condition": "above"}}
    path.write_text(json.dumps([broken]), encoding="utf-8")
    repo = JsonRuleRepository(path)

    assert repo.list_rules() == []
    repo.create_rule(name="New", category="attendance", threshold=90, condition="below")

    stored = json.loads(path.read_text(encoding="utf-8"))
    assert broken in stored
    assert len(stored) == 2


def test_from_dict_defaults():
    rule = FlagRule.from_dict(
        {"id": "r1", "name": "FAST", "category": "fast-math", "criteria": {"threshold": 3, "condition": "below"}}
    )

    assert rule.is_active is True
    assert rule.filters.grades == ()
    assert rule.color is None
    assert rule.display_color is FlagColor.YELLOW
    assert rule.threshold_value() == 3.0


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"category": "grades", "criteria": {"threshold": 1, "condition": "around"}}, "Unknown condition"),
        ({"category": "grades", "criteria": {"threshold": 1, "condition": "below"}, "color": "purple"}, "Unknown color"),
        ({"category": "grades", "criteria": {"condition": "below"}}, "missing criteria.threshold"),
        ({"category": "grades"}, "missing criteria.threshold"),
    ],
)
def test_from_dict_rejects_malformed_rules(payload, message):
    with pytest.raises(RuleValidationError, match=message):
        FlagRule.from_dict(payload)


def test_describe_rule_units():
    assert describe_rule(Category.ATTENDANCE, Condition.BELOW, 85.0).startswith(
        "Flag students when Attendance is below 85%."
    )
    assert describe_rule(Category.GRADES, Condition.ABOVE, 3.5).startswith("Flag students when GPA is above 3.5.")


def test_every_category_has_parameters():
    assert set(CATEGORY_PARAMETERS) == set(Category)
    for params in CATEGORY_PARAMETERS.values():
        assert params.threshold_min < params.threshold_max
        assert params.suggestions


def test_edit_updates_fields_and_auto_description(rules_repo):
    rule = rules_repo.create_rule(name="Absence", category="attendance", threshold=90, condition="below")

    edited = rules_repo.edit_rule(rule.id, threshold=85, grades=["3"], color="orange")

    assert rules_repo.get_rule(rule.id) == edited
    assert edited.id == rule.id
    assert edited.created_at == rule.created_at
    assert edited.name == "Absence"
    assert edited.threshold_value() == 85
    assert edited.filters.grades == ("3",)
    assert edited.color is FlagColor.ORANGE
    assert edited.description.startswith("Flag students when Attendance is below 85%.")


def test_edit_keeps_custom_description(rules_repo):
    rule = rules_repo.create_rule(
        name="GPA", category="grades", threshold=2.0, condition="below", description="Counselor referral list"
    )

    edited = rules_repo.edit_rule(rule.id, condition="above", threshold=3.5)

    assert edited.condition is Condition.ABOVE
    assert edited.description == "Counselor referral list"


def test_edit_rejects_bad_values_without_saving(rules_repo):
    rule = rules_repo.create_rule(name="GPA", category="grades", threshold=2.0, condition="below")

    with pytest.raises(RuleValidationError):
        rules_repo.edit_rule(rule.id, threshold="low")
    with pytest.raises(RuleValidationError, match="Unknown condition"):
        rules_repo.edit_rule(rule.id, condition="around")
    with pytest.raises(RuleNotFoundError):
        rules_repo.edit_rule("missing", name="x")
    assert rules_repo.get_rule(rule.id) == rule


def test_json_repository_edit_persists(tmp_path):
    path = tmp_path / "flag_rules.json"
    repo = JsonRuleRepository(path)
    rule = repo.create_rule(name="Incidents", category="discipline", threshold=2, condition="above")

    repo.edit_rule(rule.id, name="Repeat incidents", classes=["Room 101"])

    reloaded = JsonRuleRepository(path).get_rule(rule.id)
    assert reloaded.name == "Repeat incidents"
    assert reloaded.filters.classes == ("Room 101",)


def test_json_repository_invalid_json_names_the_file(tmp_path):
    path = tmp_path / "flag_rules.json"
    path.write_text("[{not json", encoding="utf-8")

    with pytest.raises(RuleValidationError, match="not valid JSON"):
        JsonRuleRepository(path).list_active_rules()


@pytest.mark.parametrize(
    "category, preset, expected",
    [
        (Category.ATTENDANCE, "Severe Absenteeism", (Condition.BELOW, 80.0)),
        (Category.GRADES, "Honor Roll", (Condition.ABOVE, 3.5)),
        (Category.FAST_ELA, "Level 1 (Inadequate)", (Condition.EQUALS, 1.0)),
        (Category.IREADY_MATH, "1 Grade Below", (Condition.BELOW, 450.0)),
        (Category.DISCIPLINE, None, (Condition.ABOVE, 0.0)),
        (Category.ATTENDANCE, "Custom", (Condition.BELOW, 0.0)),
    ],
)
def test_form_defaults_from_presets(category, preset, expected):
    assert form_defaults(category, preset) == expected


def test_presets_fit_threshold_range():
    for params in CATEGORY_PARAMETERS.values():
        for _, _, threshold in params.suggestions:
            assert params.threshold_min <= threshold <= params.threshold_max
