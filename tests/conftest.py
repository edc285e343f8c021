from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path

import pytest

from sim_runner import DEFAULT_REGISTRY, ProgramRegistry, RunnerSettings


@pytest.fixture
def settings(tmp_path: Path) -> RunnerSettings:
    return RunnerSettings(
        output_dir=tmp_path / "out",
        code_dir=tmp_path / "code",
        kill_grace_seconds=1.0,
    )


@pytest.fixture
def python_registry() -> ProgramRegistry:
    program = replace(DEFAULT_REGISTRY.get("python"), executable=sys.executable)
    return ProgramRegistry([program])
