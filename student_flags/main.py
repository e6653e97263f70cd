from __future__ import annotations

import logging
from pathlib import Path

from student_flags.config.settings import settings
from student_flags.database.db_manager import DBManager
from student_flags.database.loader import import_directory
from student_flags.database.record_store import SQLiteRecordStore
from student_flags.engine.flag_loop import run_flagging
from student_flags.engine.rule_store import JsonRuleRepository
from student_flags.engine.rules import RuleValidationError


def setup_logging(logs_dir: Path, level: str = "INFO") -> None:
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / "flags.log"
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.FileHandler(log_path, encoding="utf-8"), logging.StreamHandler()],
    )


def main() -> int:
    setup_logging(settings.logs_dir, settings.log_level)

    dbm = DBManager(settings.database_path)
    dbm.init_db()
    store = SQLiteRecordStore(dbm)

    if settings.data_dir.exists():
        summary = import_directory(store, settings.data_dir)
        logging.info("Import: students=%s records=%s aliases=%s", summary.students, summary.records, summary.aliases)

    rules = JsonRuleRepository(settings.rules_path)
    try:
        result = run_flagging(
            store=store,
            rules=rules,
            outputs_path=settings.outputs_dir / "flags.json",
        )
    except RuleValidationError:
        logging.exception("Could not load flag rules from %s", settings.rules_path)
        return 1

    logging.info("Done. Processed=%s Flagged=%s", result.processed, result.flagged)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
