from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class RuleValidationError(ValueError):
    pass


class Category(str, Enum):
    ATTENDANCE = "attendance"
    GRADES = "grades"
    DISCIPLINE = "discipline"
    IREADY_READING = "iready-reading"
    IREADY_MATH = "iready-math"
    FAST_MATH = "fast-math"
    FAST_ELA = "fast-ela"
    FAST_SCIENCE = "fast-science"
    FAST_WRITING = "fast-writing"


class Condition(str, Enum):
    ABOVE = "above"
    BELOW = "below"
    EQUALS = "equals"


class FlagColor(str, Enum):
    RED = "red"
    ORANGE = "orange"
    YELLOW = "yellow"
    GREEN = "green"
    BLUE = "blue"


IREADY_CATEGORIES = frozenset({Category.IREADY_READING, Category.IREADY_MATH})
FAST_CATEGORIES = frozenset(
    {Category.FAST_MATH, Category.FAST_ELA, Category.FAST_SCIENCE, Category.FAST_WRITING}
)

DEFAULT_COLORS: dict[Category, FlagColor] = {
    Category.ATTENDANCE: FlagColor.BLUE,
    Category.GRADES: FlagColor.RED,
    Category.DISCIPLINE: FlagColor.ORANGE,
    Category.IREADY_READING: FlagColor.GREEN,
    Category.IREADY_MATH: FlagColor.GREEN,
    Category.FAST_MATH: FlagColor.YELLOW,
    Category.FAST_ELA: FlagColor.YELLOW,
    Category.FAST_SCIENCE: FlagColor.YELLOW,
    Category.FAST_WRITING: FlagColor.YELLOW,
}


@dataclass(frozen=True)
class CategoryParameters:
    label: str
    threshold_label: str
    threshold_min: float
    threshold_max: float
    threshold_step: float
    default_condition: Condition
    suggestions: tuple[tuple[str, Condition, float], ...]
    help_text: str


def _fast_parameters(subject: str) -> CategoryParameters:
    return CategoryParameters(
        label=f"FAST {subject}",
        threshold_label="Achievement Level",
        threshold_min=1,
        threshold_max=5,
        threshold_step=1,
        default_condition=Condition.BELOW,
        suggestions=(
            ("Level 1 (Inadequate)", Condition.EQUALS, 1),
            ("Below Satisfactory", Condition.BELOW, 3),
            ("Proficient or Above", Condition.ABOVE, 3),
        ),
        help_text=(
            f"Set FAST {subject} achievement level (1-5). "
            "Level 3 is satisfactory, levels 4-5 are proficient/mastery."
        ),
    )


def _iready_parameters(subject: str) -> CategoryParameters:
    return CategoryParameters(
        label=f"iReady {subject}",
        threshold_label="Scale Score",
        threshold_min=100,
        threshold_max=800,
        threshold_step=1,
        default_condition=Condition.BELOW,
        suggestions=(
            ("2+ Grades Below", Condition.BELOW, 400),
            ("1 Grade Below", Condition.BELOW, 450),
            ("On Grade Level", Condition.BELOW, 500),
        ),
        help_text=(
            f"Set iReady {subject} scale score (100-800). "
            "Lower scores indicate students needing intervention."
        ),
    )


CATEGORY_PARAMETERS: dict[Category, CategoryParameters] = {
    Category.ATTENDANCE: CategoryParameters(
        label="Attendance",
        threshold_label="Attendance Rate (%)",
        threshold_min=0,
        threshold_max=100,
        threshold_step=1,
        default_condition=Condition.BELOW,
        suggestions=(
            ("Chronic Absenteeism", Condition.BELOW, 90),
            ("Severe Absenteeism", Condition.BELOW, 80),
            ("Perfect Attendance", Condition.EQUALS, 100),
        ),
        help_text=(
            "Set attendance rate threshold (0-100%). "
            "Students are flagged when their attendance falls below this percentage."
        ),
    ),
    Category.GRADES: CategoryParameters(
        label="GPA",
        threshold_label="GPA Score",
        threshold_min=0,
        threshold_max=4.0,
        threshold_step=0.1,
        default_condition=Condition.BELOW,
        suggestions=(
            ("Academic Probation", Condition.BELOW, 2.0),
            ("At Risk", Condition.BELOW, 2.5),
            ("Honor Roll", Condition.ABOVE, 3.5),
        ),
        help_text="Set GPA threshold (0.0-4.0). Flag students based on their grade point average.",
    ),
    Category.DISCIPLINE: CategoryParameters(
        label="Discipline Records",
        threshold_label="Number of Incidents",
        threshold_min=0,
        threshold_max=50,
        threshold_step=1,
        default_condition=Condition.ABOVE,
        suggestions=(
            ("Any Incident", Condition.ABOVE, 0),
            ("Multiple Incidents", Condition.ABOVE, 2),
            ("Severe Pattern", Condition.ABOVE, 5),
        ),
        help_text="Set the number of discipline incidents. Flag students who exceed this count.",
    ),
    Category.IREADY_READING: _iready_parameters("Reading"),
    Category.IREADY_MATH: _iready_parameters("Math"),
    Category.FAST_MATH: _fast_parameters("Math"),
    Category.FAST_ELA: _fast_parameters("ELA"),
    Category.FAST_SCIENCE: _fast_parameters("Science"),
    Category.FAST_WRITING: _fast_parameters("Writing"),
}


def form_defaults(category: Category, preset: str | None = None) -> tuple[Condition, float]:
    """Condition and threshold to seed the rule form with, from a named preset when given."""
    params = CATEGORY_PARAMETERS[category]
    for label, condition, threshold in params.suggestions:
        if label == preset:
            return condition, float(threshold)
    return params.default_condition, float(params.threshold_min)


def format_number(value: float | int | str) -> str:
    """Render 90.0 as "90" and 2.5 as "2.5"; strings pass through."""
    if isinstance(value, str):
        return value.strip()
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def describe_rule(category: Category, condition: Condition, threshold: float | str) -> str:
    label = CATEGORY_PARAMETERS[category].label
    unit = "%" if category is Category.ATTENDANCE else ""
    return (
        f"Flag students when {label} is {condition.value} {format_number(threshold)}{unit}. "
        "This rule helps identify students who may need additional support or intervention."
    )


def parse_enum(enum_cls: type[Enum], value: Any, what: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise RuleValidationError(f"Unknown {what} {value!r}; expected one of: {allowed}")


@dataclass(frozen=True)
class RuleCriteria:
    threshold: float | str
    condition: Condition
    type: str = ""
    timeframe: str | None = None


@dataclass(frozen=True)
class RuleFilters:
    grades: tuple[str, ...] = ()
    classes: tuple[str, ...] = ()

    def applies_to(self, grade: str | None, class_name: str | None) -> bool:
        if self.grades and str(grade) not in self.grades:
            return False
        if self.classes and (class_name or "") not in self.classes:
            return False
        return True


@dataclass(frozen=True)
class FlagRule:
    id: str
    name: str
    category: Category
    criteria: RuleCriteria
    filters: RuleFilters = field(default_factory=RuleFilters)
    color: FlagColor | None = None
    description: str = ""
    is_active: bool = True
    created_at: str = ""

    @property
    def condition(self) -> Condition:
        return self.criteria.condition

    @property
    def display_color(self) -> FlagColor:
        return self.color or DEFAULT_COLORS[self.category]

    def threshold_value(self) -> float:
        """Threshold coerced to a number; rules edited in forms may store strings."""
        raw = self.criteria.threshold
        try:
            value = float(str(raw).strip()) if isinstance(raw, str) else float(raw)
        except (TypeError, ValueError):
            raise RuleValidationError(f"Rule {self.name!r} has a non-numeric threshold: {raw!r}")
        if not math.isfinite(value):
            raise RuleValidationError(f"Rule {self.name!r} has a non-numeric threshold: {raw!r}")
        return value

    def with_changes(self, **changes: Any) -> "FlagRule":
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FlagRule":
        """Parse one rule from its JSON persistence form (camelCase keys)."""

        if not isinstance(data, dict):
            raise RuleValidationError("Rule must be an object")
        criteria = data.get("criteria")
        if not isinstance(criteria, dict) or "threshold" not in criteria:
            raise RuleValidationError(f"Rule {data.get('name')!r} is missing criteria.threshold")

        filters = data.get("filters") or {}
        color = data.get("color")
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            category=parse_enum(Category, data.get("category"), "category"),
            criteria=RuleCriteria(
                threshold=criteria["threshold"],
                condition=parse_enum(Condition, criteria.get("condition"), "condition"),
                type=str(criteria.get("type") or ""),
                timeframe=criteria.get("timeframe"),
            ),
            filters=RuleFilters(
                grades=tuple(str(g) for g in filters.get("grades") or ()),
                classes=tuple(str(c) for c in filters.get("classes") or ()),
            ),
            color=parse_enum(FlagColor, color, "color") if color else None,
            description=str(data.get("description") or ""),
            is_active=bool(data.get("isActive", True)),
            created_at=str(data.get("createdAt") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        criteria: dict[str, Any] = {
            "type": self.criteria.type,
            "threshold": self.criteria.threshold,
            "condition": self.criteria.condition.value,
        }
        if self.criteria.timeframe:
            criteria["timeframe"] = self.criteria.timeframe
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category.value,
            "criteria": criteria,
            "filters": {"grades": list(self.filters.grades), "classes": list(self.filters.classes)},
            "color": self.display_color.value,
            "description": self.description,
            "isActive": self.is_active,
            "createdAt": self.created_at,
        }
