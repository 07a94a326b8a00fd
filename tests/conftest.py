from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from bot_status import DashboardPaths


@pytest.fixture
def paths(tmp_path: Path) -> DashboardPaths:
    return DashboardPaths.for_root(tmp_path)


@pytest.fixture
def write_registry(paths: DashboardPaths):
    def _write(payload: Any) -> Path:
        paths.registry.parent.mkdir(parents=True, exist_ok=True)
        text = payload if isinstance(payload, str) else json.dumps(payload)
        paths.registry.write_text(text, encoding="utf-8")
        return paths.registry

    return _write


@pytest.fixture
def write_log(paths: DashboardPaths):
    def _write(filename: str, lines: list[str]) -> Path:
        paths.logs_dir.mkdir(parents=True, exist_ok=True)
        path = paths.logs_dir / filename
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    return _write
