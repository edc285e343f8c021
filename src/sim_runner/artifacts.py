from __future__ import annotations

import logging
import re
from pathlib import Path

from .programs import ProgramDefinition

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```[A-Za-z0-9_.+-]*[ \t]*\n?")


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences an LLM wrapped around source text.

    Example:
        ```python
        code = strip_code_fences("```python\\nprint(1)\\n```")
        ```
    """
    return _FENCE_PATTERN.sub("", text).strip()


def artifact_stem(timestamp: int, attempt: int = 0) -> str:
    """Base file name shared by a run's source and expected output.

    Example:
        ```python
        stem = artifact_stem(1718000000000)
        ```
    """
    if attempt == 0:
        return f"simulation_{timestamp}"
    return f"simulation_{timestamp}_{attempt}"


def expected_output_path(output_dir: Path, program: ProgramDefinition, stem: str) -> Path:
    """Path the program is told (via `OUTPUT_PATH`) to write its artifact to.

    Example:
        ```python
        out = expected_output_path(Path("/tmp/out"), prog, "simulation_1")
        ```
    """
    return output_dir / f"{stem}{program.output_extension}"


def write_source(
    source_code: str,
    program: ProgramDefinition,
    code_dir: Path,
    timestamp: int,
) -> Path:
    """Persist generated source under a name no other run is using.

    Processing sketches get their own folder named like the sketch because
    processing-java runs a folder, not a file.

    Example:
        ```python
        path = write_source("print(1)", DEFAULT_REGISTRY.get("python"), Path("/tmp/code"), 1718000000000)
        ```
    """
    data = source_code.encode("utf-8")
    code_dir.mkdir(parents=True, exist_ok=True)
    attempt = 0
    while True:
        stem = artifact_stem(timestamp, attempt)
        if program.id == "processing":
            sketch_dir = code_dir / stem
            try:
                sketch_dir.mkdir()
            except FileExistsError:
                attempt += 1
                continue
            path = sketch_dir / f"{stem}{program.file_extension}"
        else:
            path = code_dir / f"{stem}{program.file_extension}"
        try:
            with path.open("xb") as handle:
                handle.write(data)
        except FileExistsError:
            attempt += 1
            continue
        logger.debug("Wrote %s source to %s", program.display_name, path)
        return path


def remove_source(path: Path, program: ProgramDefinition) -> None:
    """Delete a source file written by `write_source` (and its sketch folder).

    Example:
        ```python
        remove_source(path, prog)
        ```
    """
    try:
        path.unlink(missing_ok=True)
        if program.id == "processing":
            path.parent.rmdir()
    except OSError as exc:
        logger.warning("Failed to delete source %s: %s", path, exc)
