from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


PROJECT_ROOT = Path(__file__).resolve().parents[1]
load_dotenv(PROJECT_ROOT / ".env")


def _path_env(name: str, default: Path) -> Path:
    value = os.getenv(name)
    return Path(value) if value else default


@dataclass(frozen=True)
class Settings:
    database_path: Path = _path_env("FLAGS_DATABASE_PATH", PROJECT_ROOT / "student_flags.db")
    rules_path: Path = _path_env("FLAGS_RULES_PATH", PROJECT_ROOT / "data" / "flag_rules.json")

    data_dir: Path = _path_env("FLAGS_DATA_DIR", PROJECT_ROOT / "data")
    outputs_dir: Path = _path_env("FLAGS_OUTPUTS_DIR", PROJECT_ROOT / "outputs")
    logs_dir: Path = _path_env("FLAGS_LOGS_DIR", PROJECT_ROOT / "logs")

    log_level: str = os.getenv("FLAGS_LOG_LEVEL", "INFO").upper()


settings = Settings()
