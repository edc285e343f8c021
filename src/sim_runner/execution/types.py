from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any


class Backend(str, Enum):
    """Where a request was executed.

    Example:
        ```python
        backend = Backend("remote")
        ```
    """

    LOCAL = "local"
    REMOTE = "remote"


class ErrorKind(str, Enum):
    """Failure taxonomy reported on `ExecutionResult.error_kind`.

    `NON_ZERO_EXIT` is informational only: several tools exit non-zero on a
    successful run, so artifact presence decides success.

    Example:
        ```python
        kind = ErrorKind.EXECUTION_TIMEOUT
        ```
    """

    CODE_MISSING = "code_missing"
    UNKNOWN_PROGRAM = "unknown_program"
    SPAWN_FAILED = "spawn_failed"
    EXECUTION_TIMEOUT = "execution_timeout"
    NON_ZERO_EXIT = "non_zero_exit"
    NO_ARTIFACT = "no_artifact"
    REMOTE_UNAVAILABLE = "remote_unavailable"
    REMOTE_ERROR = "remote_error"


@dataclass(slots=True)
class ExecutionRequest:
    """One generate-and-run attempt handed to an execution engine.

    Example:
        ```python
        req = ExecutionRequest.create("python", "print(1)", output_dir="/tmp/out", timeout_seconds=5)
        ```
    """

    program_id: str
    source_code: str
    output_dir: Path
    timeout_seconds: float
    request_timestamp: int
    started_at: float
    options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        program_id: str,
        source_code: str,
        *,
        output_dir: str | Path,
        timeout_seconds: float,
        options: dict[str, Any] | None = None,
    ) -> "ExecutionRequest":
        """Build a request stamped with the current time.

        Example:
            ```python
            req = ExecutionRequest.create("r", "plot(1)", output_dir="/tmp/out", timeout_seconds=300)
            ```
        """
        now = time.time()
        return cls(
            program_id=program_id,
            source_code=source_code,
            output_dir=Path(output_dir),
            timeout_seconds=float(timeout_seconds),
            request_timestamp=int(now * 1000),
            started_at=now,
            options=dict(options or {}),
        )


@dataclass(slots=True)
class ExecutionResult:
    """Terminal outcome of one request.

    Example:
        ```python
        res = ExecutionResult(success=False, error="No output file generated", error_kind=ErrorKind.NO_ARTIFACT)
        ```
    """

    success: bool
    output_file_path: Path | None = None
    output_url: str | None = None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None
    error_kind: ErrorKind | None = None
    exit_code: int | None = None
    backend: Backend = Backend.LOCAL

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        error: str,
        *,
        stdout: str = "",
        stderr: str = "",
        exit_code: int | None = None,
        backend: Backend = Backend.LOCAL,
    ) -> "ExecutionResult":
        """Shortcut for a failed result.

        Example:
            ```python
            res = ExecutionResult.failure(ErrorKind.CODE_MISSING, "Code is required")
            ```
        """
        return cls(
            success=False,
            stdout=stdout,
            stderr=stderr,
            error=error,
            error_kind=kind,
            exit_code=exit_code,
            backend=backend,
        )

    @property
    def output_file(self) -> str | None:
        """Return the artifact file name, if any.

        Example:
            ```python
            name = res.output_file
            ```
        """
        if self.output_file_path is None:
            return None
        return self.output_file_path.name
