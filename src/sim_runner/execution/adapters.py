from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping

from ..programs import ProgramDefinition


@dataclass(frozen=True, slots=True)
class Invocation:
    """Fully resolved child-process invocation.

    Example:
        ```python
        inv = Invocation(argv=["python", "-u", "sim.py"], cwd=Path("/tmp/code"), env={"OUTPUT_PATH": "/tmp/out/a.mp4"})
        ```
    """

    argv: list[str]
    cwd: Path
    env: dict[str, str]


ArgsBuilder = Callable[[ProgramDefinition, Path, Path], list[str]]


def _script_args(program: ProgramDefinition, source: Path, expected: Path) -> list[str]:
    """`<exe> <base args> <script>` for plain interpreters (Python, R, Julia, Manim).

    Example:
        ```python
        args = _script_args(prog, Path("/c/sim.R"), Path("/o/sim.mp4"))
        ```
    """
    return [program.executable, *program.base_args, str(source)]


def _matlab_args(program: ProgramDefinition, source: Path, expected: Path) -> list[str]:
    """Wrap the script in a batch expression that always reaches `exit`.

    Example:
        ```python
        args = _matlab_args(prog, Path("/c/simulation_1.m"), Path("/o/simulation_1.mp4"))
        ```
    """
    script_dir = source.parent.as_posix()
    command = (
        f"try; cd('{script_dir}'); run('{source.stem}'); "
        "catch ME; disp(ME.message); end; exit;"
    )
    return [program.executable, *program.base_args, command]


def _blender_args(program: ProgramDefinition, source: Path, expected: Path) -> list[str]:
    """Run the script headless and render the animation to the expected path.

    Example:
        ```python
        args = _blender_args(prog, Path("/c/scene.py"), Path("/o/simulation_1.mp4"))
        ```
    """
    return [
        program.executable,
        *program.base_args,
        "--python",
        source.as_posix(),
        "--render-output",
        expected.as_posix(),
        "--render-format",
        "FFMPEG",
        "--render-anim",
    ]


def _octave_args(program: ProgramDefinition, source: Path, expected: Path) -> list[str]:
    """Evaluate `run('<file>')` from the script directory.

    Example:
        ```python
        args = _octave_args(prog, Path("/c/simulation_1.m"), Path("/o/simulation_1.mp4"))
        ```
    """
    return [program.executable, *program.base_args, "--eval", f"run('{source.name}')"]


def _gnuplot_args(program: ProgramDefinition, source: Path, expected: Path) -> list[str]:
    """Load the script with `-c` so it can read call arguments.

    Example:
        ```python
        args = _gnuplot_args(prog, Path("/c/plot.plt"), Path("/o/simulation_1.gif"))
        ```
    """
    return [program.executable, *program.base_args, "-c", str(source)]


def _graphviz_args(program: ProgramDefinition, source: Path, expected: Path) -> list[str]:
    """Render the graph straight to the expected output file.

    Example:
        ```python
        args = _graphviz_args(prog, Path("/c/g.dot"), Path("/o/simulation_1.png"))
        ```
    """
    return [program.executable, *program.base_args, "-o", str(expected), str(source)]


def _processing_args(program: ProgramDefinition, source: Path, expected: Path) -> list[str]:
    """Run the sketch folder containing the source.

    Example:
        ```python
        args = _processing_args(prog, Path("/c/simulation_1/simulation_1.pde"), Path("/o/simulation_1.mp4"))
        ```
    """
    return [program.executable, *program.base_args, f"--sketch={source.parent}", "--run"]


ADAPTERS: dict[str, ArgsBuilder] = {
    "python": _script_args,
    "matlab": _matlab_args,
    "blender": _blender_args,
    "r": _script_args,
    "julia": _script_args,
    "octave": _octave_args,
    "gnuplot": _gnuplot_args,
    "graphviz": _graphviz_args,
    "processing": _processing_args,
    "manim": _script_args,
}


def build_environment(
    program: ProgramDefinition,
    expected: Path,
    options: Mapping[str, Any] | None = None,
    base_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Parent environment plus `OUTPUT_PATH`, program aliases and `SIM_OPTIONS`.

    Example:
        ```python
        env = build_environment(DEFAULT_REGISTRY.get("blender"), Path("/o/simulation_1.mp4"))
        ```
    """
    env = dict(os.environ if base_env is None else base_env)
    output_path = expected.as_posix()
    env["OUTPUT_PATH"] = output_path
    for alias in program.env_aliases:
        env[alias] = output_path
    env["SIM_OPTIONS"] = json.dumps(dict(options or {}), default=str)
    return env


def build_invocation(
    program: ProgramDefinition,
    source: Path,
    expected: Path,
    options: Mapping[str, Any] | None = None,
    base_env: Mapping[str, str] | None = None,
) -> Invocation:
    """Build the argv, working directory and environment for one run.

    Unknown program ids fall back to `<exe> <base args> <script>`.

    Example:
        ```python
        inv = build_invocation(DEFAULT_REGISTRY.get("octave"), Path("/c/simulation_1.m"), Path("/o/simulation_1.mp4"))
        ```
    """
    builder = ADAPTERS.get(program.id, _script_args)
    return Invocation(
        argv=builder(program, source, expected),
        cwd=source.parent,
        env=build_environment(program, expected, options, base_env),
    )
