"""Tests for settings loading and lifecycle events."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from xlcalc.config import CONFIG_FILENAME, Settings
from xlcalc.observe.events import EventEmitter, Timer


def test_defaults_without_file(tmp_path: Path):
    settings = Settings.load_from_dir(tmp_path)
    assert settings.events is False
    assert settings.engine.cycle_error == "#CYCLE!"
    assert settings.policy.protected_sheets == []


def test_load_from_dir(tmp_path: Path):
    (tmp_path / CONFIG_FILENAME).write_text(
        "events: true\n"
        "engine:\n  ref_error: '#BADREF!'\n"
        "policy:\n  protected_sheets: [Totals]\n  mutation_thresholds: { max_cells: 100 }\n",
        encoding="utf-8",
    )
    settings = Settings.load_from_dir(tmp_path)
    assert settings.events is True
    assert settings.engine.ref_error == "#BADREF!"
    assert settings.engine.parse_error == "#ERROR!"
    assert settings.policy.mutation_thresholds == {"max_cells": 100}


def test_empty_file_gives_defaults(tmp_path: Path):
    path = tmp_path / CONFIG_FILENAME
    path.write_text("", encoding="utf-8")
    assert Settings.load(path) == Settings()


def test_rejects_non_mapping(tmp_path: Path):
    path = tmp_path / CONFIG_FILENAME
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError):
        Settings.load(path)


def test_rejects_unknown_keys(tmp_path: Path):
    path = tmp_path / CONFIG_FILENAME
    path.write_text("verbose: true\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        Settings.load(path)


def test_missing_explicit_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        Settings.load(tmp_path / "absent.yaml")


def test_emitter_writes_ndjson():
    stream = io.StringIO()
    emitter = EventEmitter(enabled=True, stream=stream)
    emitter.emit("workbook.saved", {"path": Path("/tmp/x.xlsx")})
    payload = json.loads(stream.getvalue())
    assert payload["event"] == "workbook.saved"
    assert payload["seq"] == 1
    assert payload["data"] == {"path": "/tmp/x.xlsx"}
    assert "timestamp" in payload


def test_disabled_emitter_is_silent():
    stream = io.StringIO()
    EventEmitter(stream=stream).emit("workbook.created", {})
    assert stream.getvalue() == ""


def test_timer():
    with Timer() as t:
        pass
    assert t.elapsed_ms >= 0
