from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, replace
from typing import Any, Iterable, Iterator, Mapping, Sequence

from .config import RunnerSettings, normalize_program_override
from .errors import UnknownProgramError

DEFAULT_PROGRAM_ID = "python"
_VIDEO_EXTENSIONS = (".mp4", ".gif", ".avi")


@dataclass(frozen=True, slots=True)
class ProgramDefinition:
    """Static description of one supported external program.

    Example:
        ```python
        prog = ProgramDefinition("gnuplot", "Gnuplot", ".plt", "gnuplot", (), frozenset({"gnuplot"}),
                                 ".gif", (".gif", ".png"), 300)
        ```
    """

    id: str
    display_name: str
    file_extension: str
    executable: str
    base_args: tuple[str, ...]
    keywords: frozenset[str]
    output_extension: str
    allowed_extensions: tuple[str, ...]
    timeout_seconds: float
    env_aliases: tuple[str, ...] = ()
    max_concurrent: int = 0
    media_subdir: str | None = None

    @property
    def env_prefix(self) -> str:
        """Prefix used for per-program environment variables.

        Example:
            ```python
            assert DEFAULT_REGISTRY.get("r").env_prefix == "R"
            ```
        """
        return self.id.upper()


DEFAULT_PROGRAMS: tuple[ProgramDefinition, ...] = (
    ProgramDefinition(
        id="python",
        display_name="Python",
        file_extension=".py",
        executable="python",
        base_args=("-u",),
        keywords=frozenset({"python", "matplotlib", "numpy", "plotly", "scipy", "pandas"}),
        output_extension=".mp4",
        allowed_extensions=_VIDEO_EXTENSIONS,
        timeout_seconds=300,
    ),
    ProgramDefinition(
        id="matlab",
        display_name="MATLAB",
        file_extension=".m",
        executable="matlab",
        base_args=("-batch",),
        keywords=frozenset({"matlab", "simulink", "matlab engine"}),
        output_extension=".mp4",
        allowed_extensions=(".mp4", ".avi", ".mov"),
        timeout_seconds=600,
    ),
    ProgramDefinition(
        id="blender",
        display_name="Blender",
        file_extension=".py",
        executable="blender",
        base_args=("--background", "--no-window-focus", "--no-sound", "--disable-autoexec"),
        keywords=frozenset({"blender", "3d", "animation", "rendering", "bpy"}),
        output_extension=".mp4",
        allowed_extensions=(".mp4", ".avi", ".mov", ".mkv"),
        timeout_seconds=900,
        env_aliases=("BLENDER_OUTPUT_PATH",),
    ),
    ProgramDefinition(
        id="r",
        display_name="R",
        file_extension=".R",
        executable="Rscript",
        base_args=(),
        # A bare "r" keyword would match nearly every sentence.
        keywords=frozenset({"r language", "ggplot2", "shiny", "statistics", "rscript"}),
        output_extension=".mp4",
        allowed_extensions=_VIDEO_EXTENSIONS,
        timeout_seconds=300,
    ),
    ProgramDefinition(
        id="julia",
        display_name="Julia",
        file_extension=".jl",
        executable="julia",
        base_args=(),
        keywords=frozenset({"julia", "julia language", "pluto", "plots", "differential equations"}),
        output_extension=".mp4",
        allowed_extensions=_VIDEO_EXTENSIONS,
        timeout_seconds=300,
    ),
    ProgramDefinition(
        id="octave",
        display_name="GNU Octave",
        file_extension=".m",
        executable="octave",
        base_args=("--no-gui",),
        keywords=frozenset({"octave", "gnu octave", "matlab alternative"}),
        output_extension=".mp4",
        allowed_extensions=_VIDEO_EXTENSIONS,
        timeout_seconds=300,
    ),
    ProgramDefinition(
        id="gnuplot",
        display_name="Gnuplot",
        file_extension=".plt",
        executable="gnuplot",
        base_args=(),
        keywords=frozenset({"gnuplot", "plotting", "graph"}),
        output_extension=".gif",
        allowed_extensions=(".gif", ".png", ".mp4"),
        timeout_seconds=300,
    ),
    ProgramDefinition(
        id="graphviz",
        display_name="Graphviz",
        file_extension=".dot",
        executable="dot",
        base_args=("-Tpng",),
        keywords=frozenset({"graphviz", "dot", "diagram", "graph", "flowchart"}),
        output_extension=".png",
        allowed_extensions=(".png",),
        timeout_seconds=120,
    ),
    ProgramDefinition(
        id="processing",
        display_name="Processing",
        file_extension=".pde",
        executable="processing-java",
        base_args=(),
        keywords=frozenset({"processing", "p5.js", "interactive", "creative coding"}),
        output_extension=".mp4",
        allowed_extensions=_VIDEO_EXTENSIONS,
        timeout_seconds=300,
    ),
    ProgramDefinition(
        id="manim",
        display_name="Manim",
        file_extension=".py",
        executable="manim",
        base_args=("-ql",),
        keywords=frozenset({"manim", "mathematical animation", "3blue1brown", "math animation"}),
        output_extension=".mp4",
        allowed_extensions=(".mp4",),
        timeout_seconds=600,
        media_subdir="media/videos",
    ),
)


def _env_overrides(program: ProgramDefinition, env: Mapping[str, str]) -> dict[str, Any]:
    """Read `<ID>_PATH`, `<ID>_TIMEOUT_SECONDS` and `<ID>_MAX_CONCURRENT`.

    Example:
        ```python
        raw = _env_overrides(prog, {"BLENDER_PATH": "/opt/blender/blender"})
        ```
    """
    raw: dict[str, Any] = {}
    prefix = program.env_prefix
    if env.get(f"{prefix}_PATH"):
        raw["executable"] = env[f"{prefix}_PATH"]
    if env.get(f"{prefix}_TIMEOUT_SECONDS"):
        raw["timeout_seconds"] = env[f"{prefix}_TIMEOUT_SECONDS"]
    if env.get(f"{prefix}_MAX_CONCURRENT"):
        raw["max_concurrent"] = env[f"{prefix}_MAX_CONCURRENT"]
    return normalize_program_override(program.id, raw)


class ProgramRegistry:
    """Ordered, read-only table of program definitions.

    Declaration order is significant: the selector breaks score ties by it.

    Example:
        ```python
        registry = ProgramRegistry(DEFAULT_PROGRAMS)
        ```
    """

    def __init__(self, programs: Iterable[ProgramDefinition]) -> None:
        """Index programs by id, rejecting duplicates.

        Example:
            ```python
            registry = ProgramRegistry([prog])
            ```
        """
        self._programs: dict[str, ProgramDefinition] = {}
        for program in programs:
            if program.id in self._programs:
                raise ValueError(f"Duplicate program id: {program.id}")
            self._programs[program.id] = program
        if not self._programs:
            raise ValueError("ProgramRegistry requires at least one program")

    def get(self, program_id: str) -> ProgramDefinition:
        """Return one program or raise `UnknownProgramError`.

        Example:
            ```python
            blender = registry.get("blender")
            ```
        """
        try:
            return self._programs[program_id]
        except KeyError:
            raise UnknownProgramError(program_id) from None

    def __contains__(self, program_id: object) -> bool:
        """Check whether a program id is registered.

        Example:
            ```python
            assert "julia" in registry
            ```
        """
        return program_id in self._programs

    def __iter__(self) -> Iterator[ProgramDefinition]:
        """Iterate in declaration order.

        Example:
            ```python
            names = [p.display_name for p in registry]
            ```
        """
        return iter(self._programs.values())

    def __len__(self) -> int:
        """Return the number of registered programs.

        Example:
            ```python
            count = len(registry)
            ```
        """
        return len(self._programs)

    @property
    def ids(self) -> list[str]:
        """Program ids in declaration order.

        Example:
            ```python
            ids = registry.ids
            ```
        """
        return list(self._programs)

    @classmethod
    def from_settings(
        cls,
        settings: RunnerSettings,
        environ: Mapping[str, str] | None = None,
        programs: Sequence[ProgramDefinition] = DEFAULT_PROGRAMS,
    ) -> "ProgramRegistry":
        """Build a registry with file overrides, then environment overrides, applied.

        Example:
            ```python
            registry = ProgramRegistry.from_settings(load_settings(), os.environ)
            ```
        """
        env = os.environ if environ is None else environ
        unknown = set(settings.program_overrides) - {p.id for p in programs}
        if unknown:
            raise ValueError(f"Overrides for unknown programs: {', '.join(sorted(unknown))}")
        resolved: list[ProgramDefinition] = []
        for program in programs:
            changes = dict(settings.program_overrides.get(program.id, {}))
            changes.update(_env_overrides(program, env))
            resolved.append(replace(program, **changes) if changes else program)
        return cls(resolved)


DEFAULT_REGISTRY = ProgramRegistry(DEFAULT_PROGRAMS)


def _conversation_text(conversation: str | Sequence[Any]) -> str:
    """Flatten conversation history into one lowercase string.

    Example:
        ```python
        text = _conversation_text([{"role": "user", "content": "Use MATLAB"}])
        ```
    """
    if isinstance(conversation, str):
        return conversation.lower()
    parts: list[str] = []
    for message in conversation:
        if isinstance(message, Mapping):
            parts.append(str(message.get("content", "")))
        else:
            parts.append(str(message))
    return " ".join(parts).lower()


def keyword_score(program: ProgramDefinition, text: str) -> int:
    """Count program keywords found as substrings of lowercase text.

    Example:
        ```python
        score = keyword_score(DEFAULT_REGISTRY.get("matlab"), "matlab and simulink")
        ```
    """
    return sum(1 for keyword in program.keywords if keyword.lower() in text)


def select_program(
    conversation: str | Sequence[Any],
    override: str | None = None,
    registry: ProgramRegistry = DEFAULT_REGISTRY,
) -> str:
    """Pick the target program for a conversation.

    A registered `override` wins. Otherwise the strictly highest keyword score
    wins, ties keep registry order, and a best score of zero selects Python.

    Example:
        ```python
        assert select_program("let's use matlab and simulink") == "matlab"
        ```
    """
    if override and override in registry:
        return override
    text = _conversation_text(conversation)
    best_id = DEFAULT_PROGRAM_ID
    best_score = 0
    for program in registry:
        score = keyword_score(program, text)
        if score > best_score:
            best_id, best_score = program.id, score
    return best_id


@dataclass(frozen=True, slots=True)
class ProgramAvailability:
    """Whether a program's executable can be found.

    Example:
        ```python
        info = ProgramAvailability("python", "Python", "/usr/bin/python3", True)
        ```
    """

    id: str
    display_name: str
    executable: str
    available: bool


def available_programs(registry: ProgramRegistry = DEFAULT_REGISTRY) -> list[ProgramAvailability]:
    """Report which registered executables resolve on PATH.

    Example:
        ```python
        rows = available_programs()
        ```
    """
    rows: list[ProgramAvailability] = []
    for program in registry:
        resolved = shutil.which(program.executable)
        rows.append(
            ProgramAvailability(
                id=program.id,
                display_name=program.display_name,
                executable=resolved or program.executable,
                available=resolved is not None,
            )
        )
    return rows
