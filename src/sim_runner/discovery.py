"""Locate the artifact a program produced.

Tools do not reliably write to the path they were given, so discovery falls
back to scanning the output directory. The scan only considers files
modified at or after the request started: anything older belongs to an
earlier or concurrent run and is never returned.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator, Sequence

logger = logging.getLogger(__name__)


def _normalize_extensions(extensions: Iterable[str]) -> set[str]:
    """Lowercase extensions and make sure they start with a dot.

    Example:
        ```python
        exts = _normalize_extensions(["MP4", ".gif"])
        ```
    """
    return {ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions}


def _is_non_empty_file(path: Path) -> bool:
    """Return True when path is a regular file with content.

    Example:
        ```python
        ok = _is_non_empty_file(Path("/tmp/out/simulation_1.mp4"))
        ```
    """
    try:
        return path.is_file() and path.stat().st_size > 0
    except OSError:
        return False


def _candidates(directory: Path, recursive: bool) -> Iterator[Path]:
    """Yield files directly in (or, when recursive, below) a directory.

    Example:
        ```python
        files = list(_candidates(Path("/tmp/out"), recursive=False))
        ```
    """
    if not directory.is_dir():
        return
    entries = directory.rglob("*") if recursive else directory.iterdir()
    for entry in entries:
        if entry.is_file():
            yield entry


def find_fresh_artifacts(
    output_dir: Path,
    allowed_extensions: Iterable[str],
    started_at: float,
    search_roots: Sequence[Path] = (),
) -> list[tuple[float, Path]]:
    """Return `(mtime, path)` pairs newer than `started_at`, newest first.

    `output_dir` is scanned flat; `search_roots` are scanned recursively.

    Example:
        ```python
        fresh = find_fresh_artifacts(Path("/tmp/out"), [".mp4"], started_at=time.time() - 60)
        ```
    """
    exts = _normalize_extensions(allowed_extensions)
    found: list[tuple[float, Path]] = []
    roots: list[tuple[Path, bool]] = [(output_dir, False), *((root, True) for root in search_roots)]
    for root, recursive in roots:
        for path in _candidates(root, recursive):
            if path.suffix.lower() not in exts:
                continue
            try:
                stat = path.stat()
            except OSError:
                continue
            if stat.st_size <= 0 or stat.st_mtime < started_at:
                continue
            found.append((stat.st_mtime, path))
    found.sort(key=lambda item: item[0], reverse=True)
    return found


def resolve_output(
    expected_path: Path,
    output_dir: Path,
    allowed_extensions: Iterable[str],
    started_at: float,
    search_roots: Sequence[Path] = (),
) -> Path | None:
    """Resolve the artifact for one run, or None when nothing fresh exists.

    The expected path always wins when it holds content. Otherwise the most
    recently modified allowed file not older than `started_at` is returned.

    Example:
        ```python
        artifact = resolve_output(Path("/tmp/out/simulation_1.mp4"), Path("/tmp/out"), [".mp4"], started_at)
        ```
    """
    if _is_non_empty_file(expected_path):
        return expected_path
    fresh = find_fresh_artifacts(output_dir, allowed_extensions, started_at, search_roots)
    if not fresh:
        return None
    _, latest = fresh[0]
    logger.info("Expected output %s missing; using %s", expected_path.name, latest)
    return latest
