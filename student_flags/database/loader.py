from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pandas as pd

from student_flags.database.record_store import RecordKind, SQLiteRecordStore, StudentId


STUDENTS_FILE = "students.csv"

RECORD_FILES: dict[RecordKind, str] = {
    RecordKind.ATTENDANCE: "attendance.csv",
    RecordKind.GRADES: "grades.csv",
    RecordKind.DISCIPLINE: "discipline.csv",
    RecordKind.ASSESSMENTS: "assessments.csv",
}

REQUIRED_COLUMNS: dict[RecordKind, tuple[str, ...]] = {
    RecordKind.ATTENDANCE: ("student_id", "status"),
    RecordKind.GRADES: ("student_id", "final_grade"),
    RecordKind.DISCIPLINE: ("student_id",),
    RecordKind.ASSESSMENTS: ("student_id", "source", "score"),
}

_EMBEDDED_ID = re.compile(r"(?=_([^_]+)_)")


@dataclass
class ImportSummary:
    students: int = 0
    records: dict[str, int] = field(default_factory=dict)
    aliases: int = 0


def _read_csv(path: Path) -> list[dict[str, Any]]:
    # read everything as text so leading zeros and compound ids survive
    df = pd.read_csv(path, dtype=str)
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


def _require(rows: list[dict[str, Any]], columns: tuple[str, ...], path: Path) -> None:
    if not rows:
        return
    missing = [c for c in columns if c not in rows[0]]
    if missing:
        raise ValueError(f"{path.name}: missing required column(s): {', '.join(missing)}")


def _typed_id(raw: Any) -> StudentId:
    text = str(raw).strip()
    return int(text) if text.isdigit() and not text.startswith("0") else text


def canonical_student_id(raw_id: Any, known_ids: dict[str, StudentId]) -> StudentId | None:
    """Map a raw record id to a known student id, or None when it matches nobody.

    Plain ids match directly; compound ids match when a ``_<id>_`` segment
    names a known student.
    """

    text = str(raw_id).strip()
    if text in known_ids:
        return known_ids[text]
    for segment in _EMBEDDED_ID.findall(text):
        if segment in known_ids:
            return known_ids[segment]
    return None


def import_directory(store: SQLiteRecordStore, data_dir: Path) -> ImportSummary:
    """Load the CSV exports found in ``data_dir`` into the record store.

    Every record id is normalised to the owning student's id at ingestion time;
    the raw compound id is kept in ``id_aliases``.
    """

    summary = ImportSummary()
    known_ids: dict[str, StudentId] = {str(s.id): s.id for s in store.list_students()}

    students_path = data_dir / STUDENTS_FILE
    if students_path.exists():
        rows = _read_csv(students_path)
        _require(rows, ("id",), students_path)
        for row in rows:
            if row.get("id") is None:
                continue
            sid = _typed_id(row["id"])
            store.upsert_student(
                sid,
                first_name=row.get("first_name"),
                last_name=row.get("last_name"),
                grade=row.get("grade"),
                class_name=row.get("class_name"),
                student_number=row.get("student_number"),
            )
            known_ids[str(sid)] = sid
            summary.students += 1
        logging.info("Imported %s students from %s", summary.students, students_path)
    else:
        logging.info("No %s in %s; keeping existing students", STUDENTS_FILE, data_dir)

    for kind, file_name in RECORD_FILES.items():
        path = data_dir / file_name
        if not path.exists():
            logging.info("Skipping %s: file not found", path)
            continue
        rows = _read_csv(path)
        _require(rows, REQUIRED_COLUMNS[kind], path)
        normalised: list[dict[str, Any]] = []
        aliases: dict[str, StudentId] = {}
        for row in rows:
            raw_id = row.get("student_id")
            if raw_id is None:
                continue
            canonical = canonical_student_id(raw_id, known_ids)
            if canonical is None:
                normalised.append({**row, "student_id": _typed_id(raw_id)})
                continue
            raw_text = str(raw_id).strip()
            if raw_text != str(canonical):
                aliases[raw_text] = canonical
            normalised.append({**row, "student_id": canonical})

        # each export is the full table
        summary.records[kind.value] = store.replace_records(kind, normalised, aliases)
        summary.aliases += len(aliases)
        logging.info("Imported %s %s rows from %s", summary.records[kind.value], kind.value, path)

    return summary
