from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Mapping

from ..artifacts import expected_output_path, remove_source, write_source
from ..config import RunnerSettings
from ..discovery import resolve_output
from ..errors import UnknownProgramError
from ..programs import DEFAULT_REGISTRY, ProgramDefinition, ProgramRegistry
from .adapters import build_invocation
from .process import ProcessOutcome, ProcessStatus, run_process
from .slots import ExecutionSlots
from .types import Backend, ErrorKind, ExecutionRequest, ExecutionResult

logger = logging.getLogger(__name__)


class LocalEngine:
    """Run programs as local child processes.

    One engine serves every registered program: argument quirks live in
    `adapters`, and success is decided by artifact presence, not exit code.

    Example:
        ```python
        engine = LocalEngine(settings=RunnerSettings(output_dir=Path("/tmp/out")))
        ```
    """

    def __init__(
        self,
        *,
        registry: ProgramRegistry | None = None,
        settings: RunnerSettings | None = None,
        keep_source: bool = True,
        slots: ExecutionSlots | None = None,
        base_env: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize a local engine.

        Example:
            ```python
            engine = LocalEngine(registry=ProgramRegistry.from_settings(settings), settings=settings, keep_source=False)
            ```
        """
        self._registry = registry or DEFAULT_REGISTRY
        self._settings = settings or RunnerSettings()
        self._keep_source = keep_source
        self._slots = slots or ExecutionSlots()
        self._base_env = base_env

    @property
    def registry(self) -> ProgramRegistry:
        """Registry used to look up programs.

        Example:
            ```python
            ids = engine.registry.ids
            ```
        """
        return self._registry

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Write the source, run the program, and resolve its artifact.

        Example:
            ```python
            result = engine.execute(ExecutionRequest.create("python", code, output_dir="/tmp/out", timeout_seconds=300))
            ```
        """
        if not request.source_code or not request.source_code.strip():
            return ExecutionResult.failure(ErrorKind.CODE_MISSING, "Code is required")
        try:
            program = self._registry.get(request.program_id)
        except UnknownProgramError as exc:
            return ExecutionResult.failure(ErrorKind.UNKNOWN_PROGRAM, str(exc))

        output_dir = Path(request.output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            source = write_source(
                request.source_code,
                program,
                self._settings.source_dir,
                request.request_timestamp,
            )
        except (OSError, ValueError) as exc:
            logger.error("Could not prepare %s run: %s", program.display_name, exc)
            return ExecutionResult.failure(
                ErrorKind.SPAWN_FAILED, f"Failed to write source file: {exc}"
            )

        expected = expected_output_path(output_dir, program, source.stem)
        invocation = build_invocation(program, source, expected, request.options, self._base_env)
        try:
            with self._slots.hold(program):
                outcome = run_process(
                    invocation.argv,
                    cwd=invocation.cwd,
                    env=invocation.env,
                    timeout_seconds=request.timeout_seconds,
                    kill_grace_seconds=self._settings.kill_grace_seconds,
                    max_output_chars=self._settings.max_output_kb * 1024,
                    label=program.id,
                )
        finally:
            if not self._keep_source:
                remove_source(source, program)

        return self._to_result(program, request, source, expected, outcome)

    def _to_result(
        self,
        program: ProgramDefinition,
        request: ExecutionRequest,
        source: Path,
        expected: Path,
        outcome: ProcessOutcome,
    ) -> ExecutionResult:
        """Map a process outcome plus artifact discovery onto a result.

        Example:
            ```python
            result = engine._to_result(prog, request, source, expected, outcome)
            ```
        """
        if outcome.status is ProcessStatus.SPAWN_FAILED:
            return ExecutionResult.failure(
                ErrorKind.SPAWN_FAILED,
                outcome.error or f"Failed to start {program.display_name}",
            )
        if outcome.status is ProcessStatus.TIMED_OUT:
            return ExecutionResult.failure(
                ErrorKind.EXECUTION_TIMEOUT,
                f"{program.display_name} execution timeout ({request.timeout_seconds:g}s)",
                stdout=outcome.stdout,
                stderr=outcome.stderr,
                exit_code=outcome.returncode,
            )

        search_roots = [source.parent / program.media_subdir] if program.media_subdir else []
        artifact = resolve_output(
            expected,
            expected.parent,
            program.allowed_extensions,
            request.started_at,
            search_roots,
        )
        if artifact is None:
            return ExecutionResult.failure(
                ErrorKind.NO_ARTIFACT,
                f"{program.display_name} process exited with code {outcome.returncode}. "
                "No output file generated.",
                stdout=outcome.stdout,
                stderr=outcome.stderr,
                exit_code=outcome.returncode,
            )
        if artifact.parent != expected.parent:
            try:
                shutil.copy2(artifact, expected)
                artifact = expected
            except OSError as exc:
                logger.warning("Could not copy %s into %s: %s", artifact, expected.parent, exc)
        if outcome.returncode:
            logger.info(
                "%s exited with code %s but produced %s",
                program.display_name,
                outcome.returncode,
                artifact.name,
            )
        return ExecutionResult(
            success=True,
            output_file_path=artifact,
            output_url=self._settings.url_for(artifact),
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            exit_code=outcome.returncode,
            backend=Backend.LOCAL,
        )
