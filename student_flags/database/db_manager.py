from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path


SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"


@dataclass
class DBManager:
    db_path: Path

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self, schema_path: Path | None = None) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        schema_sql = (schema_path or SCHEMA_PATH).read_text(encoding="utf-8")
        with self.connect() as conn:
            conn.executescript(schema_sql)
            conn.commit()
