from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Protocol

from student_flags.database.db_manager import DBManager


StudentId = str | int

# Keeps each batched query well under SQLite's bound-parameter limit.
_SNAPSHOT_CHUNK = 200


class RecordKind(str, Enum):
    ATTENDANCE = "attendance"
    GRADES = "grades"
    DISCIPLINE = "discipline"
    ASSESSMENTS = "assessments"


_COLUMNS: dict[RecordKind, tuple[str, ...]] = {
    RecordKind.ATTENDANCE: ("student_id", "date", "status"),
    RecordKind.GRADES: ("student_id", "course", "final_grade"),
    RecordKind.DISCIPLINE: ("student_id", "incident_date", "infraction_code", "description"),
    RecordKind.ASSESSMENTS: ("student_id", "source", "subject", "score", "test_date"),
}


@dataclass(frozen=True)
class Student:
    id: StudentId
    first_name: str = ""
    last_name: str = ""
    grade: str | None = None
    class_name: str | None = None
    student_number: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Student":
        grade = row.get("grade")
        return cls(
            id=row["id"],
            first_name=row.get("first_name") or "",
            last_name=row.get("last_name") or "",
            grade=None if grade is None else str(grade),
            class_name=row.get("class_name") or None,
            student_number=row.get("student_number") or None,
        )


class RecordSource(Protocol):
    """Read contract the flag engine depends on."""

    def get_student(self, student_id: StudentId) -> Student | None: ...

    def list_students(self) -> list[Student]: ...

    def find_records(self, kind: RecordKind, student_id: StudentId) -> list[dict[str, Any]]: ...

    def find_compound_id(self, kind: RecordKind, fragment: str) -> StudentId | None: ...


def _id_variants(student_id: StudentId) -> list[StudentId]:
    variants: list[StudentId] = [student_id]
    text = str(student_id)
    if text != student_id:
        variants.append(text)
    elif text.isdigit() and str(int(text)) == text:
        variants.append(int(text))
    return variants


@dataclass
class RecordSnapshot:
    """Immutable in-memory view of students and their raw records.

    Built once per batch so evaluation runs synchronously over local data.
    """

    students: dict[StudentId, Student] = field(default_factory=dict)
    records: dict[RecordKind, list[dict[str, Any]]] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        students: Iterable[Student],
        records: dict[RecordKind, Iterable[dict[str, Any]]] | None = None,
    ) -> "RecordSnapshot":
        rows = {kind: [dict(r) for r in (records or {}).get(kind, [])] for kind in RecordKind}
        return cls(students={s.id: s for s in students}, records=rows)

    def get_student(self, student_id: StudentId) -> Student | None:
        for candidate in _id_variants(student_id):
            if candidate in self.students:
                return self.students[candidate]
        return None

    def list_students(self) -> list[Student]:
        return list(self.students.values())

    def find_records(self, kind: RecordKind, student_id: StudentId) -> list[dict[str, Any]]:
        wanted = _id_variants(student_id)
        return [dict(r) for r in self.records.get(kind, []) if r.get("student_id") in wanted]

    def find_compound_id(self, kind: RecordKind, fragment: str) -> StudentId | None:
        for r in self.records.get(kind, []):
            sid = r.get("student_id")
            if isinstance(sid, str) and fragment in sid:
                return sid
        return None


@dataclass
class SQLiteRecordStore:
    db: DBManager

    def upsert_student(
        self,
        student_id: StudentId,
        *,
        first_name: str | None = None,
        last_name: str | None = None,
        grade: str | int | None = None,
        class_name: str | None = None,
        student_number: str | None = None,
    ) -> None:
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO students(id, first_name, last_name, grade, class_name, student_number)
                VALUES(?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                  first_name = COALESCE(excluded.first_name, students.first_name),
                  last_name = COALESCE(excluded.last_name, students.last_name),
                  grade = COALESCE(excluded.grade, students.grade),
                  class_name = COALESCE(excluded.class_name, students.class_name),
                  student_number = COALESCE(excluded.student_number, students.student_number)
                """,
                (
                    student_id,
                    first_name,
                    last_name,
                    None if grade is None else str(grade),
                    class_name,
                    student_number,
                ),
            )
            conn.commit()

    def add_records(self, kind: RecordKind, rows: Iterable[dict[str, Any]]) -> int:
        cols = _COLUMNS[kind]
        values = [tuple(r.get(c) for c in cols) for r in rows]
        if not values:
            return 0
        placeholders = ", ".join("?" for _ in cols)
        with self.db.connect() as conn:
            conn.executemany(
                f"INSERT INTO {kind.value}({', '.join(cols)}) VALUES({placeholders})",
                values,
            )
            conn.commit()
        return len(values)

    def replace_records(
        self,
        kind: RecordKind,
        rows: Iterable[dict[str, Any]],
        aliases: dict[str, StudentId] | None = None,
    ) -> int:
        """Swap the whole table and its id aliases in one transaction."""
        cols = _COLUMNS[kind]
        values = [tuple(r.get(c) for c in cols) for r in rows]
        placeholders = ", ".join("?" for _ in cols)
        # the connection context rolls back on error, leaving the old rows in place
        with self.db.connect() as conn:
            conn.execute(f"DELETE FROM {kind.value}")
            conn.execute("DELETE FROM id_aliases WHERE table_name = ?", (kind.value,))
            conn.executemany(
                "INSERT INTO id_aliases(raw_id, table_name, student_id) VALUES(?, ?, ?)",
                [(raw_id, kind.value, sid) for raw_id, sid in (aliases or {}).items()],
            )
            conn.executemany(
                f"INSERT INTO {kind.value}({', '.join(cols)}) VALUES({placeholders})",
                values,
            )
        return len(values)

    def add_attendance(self, student_id: StudentId, date: str | None, status: str) -> None:
        self.add_records(RecordKind.ATTENDANCE, [{"student_id": student_id, "date": date, "status": status}])

    def add_grade(self, student_id: StudentId, course: str | None, final_grade: str | float | None) -> None:
        self.add_records(
            RecordKind.GRADES, [{"student_id": student_id, "course": course, "final_grade": final_grade}]
        )

    def add_discipline(
        self,
        student_id: StudentId,
        incident_date: str | None = None,
        infraction_code: str | None = None,
        description: str | None = None,
    ) -> None:
        self.add_records(
            RecordKind.DISCIPLINE,
            [
                {
                    "student_id": student_id,
                    "incident_date": incident_date,
                    "infraction_code": infraction_code,
                    "description": description,
                }
            ],
        )

    def add_assessment(
        self,
        student_id: StudentId,
        source: str,
        subject: str | None,
        score: float | None,
        test_date: str | None,
    ) -> None:
        self.add_records(
            RecordKind.ASSESSMENTS,
            [
                {
                    "student_id": student_id,
                    "source": source,
                    "subject": subject,
                    "score": score,
                    "test_date": test_date,
                }
            ],
        )

    def list_aliases(self) -> list[dict[str, Any]]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT raw_id, table_name, student_id FROM id_aliases ORDER BY table_name, raw_id"
            ).fetchall()
        return [dict(r) for r in rows]

    def get_student(self, student_id: StudentId) -> Student | None:
        wanted = _id_variants(student_id)
        placeholders = ", ".join("?" for _ in wanted)
        with self.db.connect() as conn:
            row = conn.execute(
                f"SELECT * FROM students WHERE id IN ({placeholders}) LIMIT 1", wanted
            ).fetchone()
        return Student.from_row(dict(row)) if row else None

    def list_students(self) -> list[Student]:
        with self.db.connect() as conn:
            rows = conn.execute("SELECT * FROM students ORDER BY last_name, first_name").fetchall()
        return [Student.from_row(dict(r)) for r in rows]

    def find_records(self, kind: RecordKind, student_id: StudentId) -> list[dict[str, Any]]:
        wanted = _id_variants(student_id)
        placeholders = ", ".join("?" for _ in wanted)
        with self.db.connect() as conn:
            rows = conn.execute(
                f"SELECT {', '.join(_COLUMNS[kind])} FROM {kind.value} "
                f"WHERE student_id IN ({placeholders}) ORDER BY id",
                wanted,
            ).fetchall()
        return [dict(r) for r in rows]

    def find_compound_id(self, kind: RecordKind, fragment: str) -> StudentId | None:
        with self.db.connect() as conn:
            row = conn.execute(
                f"SELECT student_id FROM {kind.value} "
                "WHERE typeof(student_id) = 'text' AND instr(student_id, ?) > 0 "
                "ORDER BY id LIMIT 1",
                (fragment,),
            ).fetchone()
        return row["student_id"] if row else None

    def snapshot(self, student_ids: Iterable[StudentId] | None = None) -> RecordSnapshot:
        """Batch-fetch students and every record that belongs to them.

        With ``student_ids`` the fetch covers exact ids plus compound ids that
        embed them; without it the whole store is copied.
        """

        with self.db.connect() as conn:
            if student_ids is None:
                students = [Student.from_row(dict(r)) for r in conn.execute("SELECT * FROM students")]
                records = {
                    kind: [
                        dict(r)
                        for r in conn.execute(
                            f"SELECT {', '.join(_COLUMNS[kind])} FROM {kind.value} ORDER BY id"
                        )
                    ]
                    for kind in RecordKind
                }
                return RecordSnapshot.build(students, records)

            ids = list(dict.fromkeys(student_ids))
            students = []
            records: dict[RecordKind, list[dict[str, Any]]] = {kind: [] for kind in RecordKind}
            for start in range(0, len(ids), _SNAPSHOT_CHUNK):
                chunk = ids[start : start + _SNAPSHOT_CHUNK]
                chunk_wanted = [v for sid in chunk for v in _id_variants(sid)]
                chunk_fragments = [f"_{sid}_" for sid in chunk]
                in_clause = ", ".join("?" for _ in chunk_wanted)
                students.extend(
                    Student.from_row(dict(r))
                    for r in conn.execute(f"SELECT * FROM students WHERE id IN ({in_clause})", chunk_wanted)
                )
                contains = " OR ".join("instr(student_id, ?) > 0" for _ in chunk_fragments)
                for kind in RecordKind:
                    rows = conn.execute(
                        f"SELECT {', '.join(_COLUMNS[kind])} FROM {kind.value} "
                        f"WHERE student_id IN ({in_clause}) "
                        f"OR (typeof(student_id) = 'text' AND ({contains})) ORDER BY id",
                        [*chunk_wanted, *chunk_fragments],
                    ).fetchall()
                    records[kind].extend(dict(r) for r in rows)
        return RecordSnapshot.build(students, records)
