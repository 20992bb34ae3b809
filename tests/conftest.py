"""Shared fixtures: fake worker and resolver executables."""
from __future__ import annotations

import os
import stat
import sys
import textwrap
from pathlib import Path

import pytest


@pytest.fixture
def make_script(tmp_path: Path):
    """Write an executable Python script into tmp_path and return its path."""

    def _make(name: str, body: str) -> str:
        path = tmp_path / name
        path.write_text(
            f"#!{sys.executable}\n" + textwrap.dedent(body).lstrip("\n"),
            encoding="utf-8",
        )
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _make


@pytest.fixture(autouse=True)
def _clear_relay_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("RELAY_"):
            monkeypatch.delenv(key, raising=False)
