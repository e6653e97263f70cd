from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from student_flags.engine.rules import (
    Category,
    Condition,
    FlagColor,
    FlagRule,
    RuleFilters,
    RuleValidationError,
    describe_rule,
    parse_enum,
)


class RuleNotFoundError(LookupError):
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class RuleRepository:
    """List/create/update/delete/toggle over a persisted rule collection.

    Every mutation reads the whole list, applies the change and writes the
    whole list back. Subclasses only provide ``_read_all`` and ``_write_all``.
    """

    def _read_all(self) -> list[FlagRule]:
        raise NotImplementedError

    def _write_all(self, rules: list[FlagRule]) -> None:
        raise NotImplementedError

    def list_rules(self) -> list[FlagRule]:
        return self._read_all()

    def list_active_rules(self) -> list[FlagRule]:
        return [r for r in self._read_all() if r.is_active]

    def get_rule(self, rule_id: str) -> FlagRule:
        for rule in self._read_all():
            if rule.id == rule_id:
                return rule
        raise RuleNotFoundError(rule_id)

    def create_rule(
        self,
        *,
        name: str,
        category: Category | str,
        threshold: float | str,
        condition: Condition | str,
        criteria_type: str = "",
        grades: list[str] | tuple[str, ...] = (),
        classes: list[str] | tuple[str, ...] = (),
        color: FlagColor | str | None = None,
        description: str = "",
        is_active: bool = True,
    ) -> FlagRule:
        draft = FlagRule.from_dict(
            {
                "name": name,
                "category": category.value if isinstance(category, Category) else category,
                "criteria": {
                    "type": criteria_type,
                    "threshold": threshold,
                    "condition": condition.value if isinstance(condition, Condition) else condition,
                },
                "filters": {"grades": list(grades), "classes": list(classes)},
                "color": color.value if isinstance(color, FlagColor) else color,
                "description": description,
                "isActive": is_active,
            }
        )
        # reject thresholds that could never be evaluated
        draft.threshold_value()
        rule = draft.with_changes(
            id=f"flag_{uuid.uuid4().hex[:12]}",
            created_at=_now_iso(),
            description=description or describe_rule(draft.category, draft.condition, threshold),
        )
        rules = self._read_all()
        rules.append(rule)
        self._write_all(rules)
        logging.info("Created flag rule %s (%s)", rule.id, rule.name)
        return rule

    def update_rule(self, rule: FlagRule) -> FlagRule:
        rules = self._read_all()
        for i, existing in enumerate(rules):
            if existing.id == rule.id:
                rules[i] = rule
                self._write_all(rules)
                logging.info("Updated flag rule %s", rule.id)
                return rule
        raise RuleNotFoundError(rule.id)

    def edit_rule(
        self,
        rule_id: str,
        *,
        name: str | None = None,
        threshold: float | str | None = None,
        condition: Condition | str | None = None,
        grades: list[str] | tuple[str, ...] | None = None,
        classes: list[str] | tuple[str, ...] | None = None,
        color: FlagColor | str | None = None,
        description: str | None = None,
    ) -> FlagRule:
        """Apply form edits to a stored rule.

        An auto-generated description follows threshold and condition changes;
        a hand-written one is kept unless replaced.
        """
        rule = self.get_rule(rule_id)
        criteria = rule.criteria
        if condition is not None:
            criteria = replace(criteria, condition=parse_enum(Condition, condition, "condition"))
        if threshold is not None:
            criteria = replace(criteria, threshold=threshold)

        updated = rule.with_changes(
            name=rule.name if name is None else name,
            criteria=criteria,
            filters=RuleFilters(
                grades=rule.filters.grades if grades is None else tuple(str(g) for g in grades),
                classes=rule.filters.classes if classes is None else tuple(str(c) for c in classes),
            ),
            color=rule.color if color is None else parse_enum(FlagColor, color, "color"),
        )
        updated.threshold_value()

        if description is None:
            auto = describe_rule(rule.category, rule.condition, rule.criteria.threshold)
            if not rule.description or rule.description == auto:
                description = describe_rule(updated.category, updated.condition, updated.criteria.threshold)
            else:
                description = rule.description
        return self.update_rule(updated.with_changes(description=description))

    def delete_rule(self, rule_id: str) -> None:
        rules = self._read_all()
        remaining = [r for r in rules if r.id != rule_id]
        if len(remaining) == len(rules):
            raise RuleNotFoundError(rule_id)
        self._write_all(remaining)
        logging.info("Deleted flag rule %s", rule_id)

    def toggle_rule(self, rule_id: str) -> FlagRule:
        rules = self._read_all()
        for i, existing in enumerate(rules):
            if existing.id == rule_id:
                rules[i] = existing.with_changes(is_active=not existing.is_active)
                self._write_all(rules)
                logging.info("Toggled flag rule %s -> active=%s", rule_id, rules[i].is_active)
                return rules[i]
        raise RuleNotFoundError(rule_id)


@dataclass
class InMemoryRuleRepository(RuleRepository):
    rules: list[FlagRule] = field(default_factory=list)

    def _read_all(self) -> list[FlagRule]:
        return list(self.rules)

    def _write_all(self, rules: list[FlagRule]) -> None:
        self.rules = list(rules)


@dataclass
class JsonRuleRepository(RuleRepository):
    """Rules persisted as a JSON array; a missing file is an empty collection."""

    path: Path
    _unreadable: list[dict[str, Any]] = field(default_factory=list, repr=False)

    def _load_raw(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except json.JSONDecodeError as e:
            raise RuleValidationError(f"{self.path} is not valid JSON: {e}") from e
        if not isinstance(data, list):
            raise RuleValidationError(f"{self.path} must contain a JSON array of rules")
        return data

    def _read_all(self) -> list[FlagRule]:
        rules: list[FlagRule] = []
        self._unreadable = []
        for raw in self._load_raw():
            try:
                rules.append(FlagRule.from_dict(raw))
            except RuleValidationError as e:
                logging.warning("Skipping unreadable rule in %s: %s", self.path, e)
                self._unreadable.append(raw)
        return rules

    def _write_all(self, rules: list[FlagRule]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # unreadable entries round-trip untouched
        payload = [r.to_dict() for r in rules] + self._unreadable
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self.path)
