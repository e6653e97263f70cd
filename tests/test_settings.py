"""Tests for environment-driven settings."""

from pathlib import Path

from student_flags.config.settings import PROJECT_ROOT, Settings, _path_env, settings


def test_path_env_override(monkeypatch, tmp_path):
    monkeypatch.setenv("FLAGS_TEST_PATH", str(tmp_path / "x.db"))
    assert _path_env("FLAGS_TEST_PATH", Path("default.db")) == tmp_path / "x.db"


def test_path_env_blank_uses_default(monkeypatch):
    monkeypatch.setenv("FLAGS_TEST_PATH", "")
    assert _path_env("FLAGS_TEST_PATH", Path("default.db")) == Path("default.db")


def test_settings_are_frozen_paths():
    assert isinstance(settings, Settings)
    assert isinstance(settings.rules_path, Path)
    assert PROJECT_ROOT.name == "student_flags"
