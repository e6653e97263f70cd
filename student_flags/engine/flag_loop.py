from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from student_flags.database.record_store import RecordSource
from student_flags.engine.aggregator import evaluate_students
from student_flags.engine.rule_store import RuleRepository


@dataclass
class FlaggingRunResult:
    processed: int
    flagged: int
    outputs_path: Path


def run_flagging(
    *,
    store: RecordSource,
    rules: RuleRepository,
    outputs_path: Path,
    as_of: datetime | None = None,
) -> FlaggingRunResult:
    as_of = as_of or datetime.now(timezone.utc)

    active = rules.list_active_rules()
    students = store.list_students()
    logging.info("Evaluating %s active rules against %s students", len(active), len(students))

    reports = evaluate_students(store, active, [s.id for s in students])

    payload = {
        "as_of": as_of.replace(microsecond=0).isoformat(),
        "rules": [r.to_dict() for r in active],
        "students": [r.to_dict() for r in reports],
    }
    outputs_path.parent.mkdir(parents=True, exist_ok=True)
    outputs_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    logging.info("Processed %s students (%s flagged); wrote %s", len(students), len(reports), outputs_path)
    return FlaggingRunResult(processed=len(students), flagged=len(reports), outputs_path=outputs_path)
