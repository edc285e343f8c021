from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from .artifacts import strip_code_fences
from .config import RunnerSettings, load_settings
from .execution.dispatcher import Dispatcher
from .execution.local_engine import LocalEngine
from .execution.remote_engine import RemoteEngine
from .execution.types import ErrorKind, ExecutionRequest, ExecutionResult
from .programs import ProgramDefinition, ProgramRegistry, select_program

logger = logging.getLogger(__name__)


class CodeGenerator(Protocol):
    def generate(self, conversation: Sequence[Any], program: ProgramDefinition) -> str:
        """Return source text for `program` from a conversation.

        Example:
            ```python
            code = generator.generate([{"role": "user", "content": "a bouncing ball"}], prog)
            ```
        """
        ...


@dataclass(slots=True)
class SimulationRun:
    """Result of `generate_and_run`: the execution result plus what was run.

    Example:
        ```python
        run = SimulationRun(result=result, program_id="python", program_name="Python", code="print(1)")
        ```
    """

    result: ExecutionResult
    program_id: str
    program_name: str
    code: str


def build_dispatcher(
    settings: RunnerSettings | None = None,
    registry: ProgramRegistry | None = None,
) -> Dispatcher:
    """Wire a dispatcher from settings.

    Example:
        ```python
        dispatcher = build_dispatcher(load_settings())
        ```
    """
    resolved = settings or load_settings()
    programs = registry or ProgramRegistry.from_settings(resolved)
    local = LocalEngine(registry=programs, settings=resolved)
    remote = RemoteEngine(settings=resolved) if resolved.remote_endpoints else None
    return Dispatcher(local, remote, use_remote=resolved.use_remote)


def run_simulation(
    code: str,
    program_id: str | None = None,
    *,
    conversation: str | Sequence[Any] = "",
    options: dict[str, Any] | None = None,
    timeout_seconds: float | None = None,
    settings: RunnerSettings | None = None,
    registry: ProgramRegistry | None = None,
    dispatcher: Dispatcher | None = None,
) -> ExecutionResult:
    """Run source code with the selected program and return its result.

    Example:
        ```python
        result = run_simulation(code, "gnuplot")
        ```
    """
    resolved = settings or load_settings()
    programs = registry or ProgramRegistry.from_settings(resolved)
    selected = select_program(conversation, program_id, programs)
    program = programs.get(selected)
    request = ExecutionRequest.create(
        program.id,
        code,
        output_dir=resolved.output_dir,
        timeout_seconds=timeout_seconds or program.timeout_seconds,
        options=options,
    )
    active = dispatcher or build_dispatcher(resolved, programs)
    return active.dispatch(request)


def generate_and_run(
    conversation: Sequence[Any],
    generator: CodeGenerator,
    *,
    program_id: str | None = None,
    options: dict[str, Any] | None = None,
    settings: RunnerSettings | None = None,
    registry: ProgramRegistry | None = None,
    dispatcher: Dispatcher | None = None,
) -> SimulationRun:
    """Select a program, generate its source, and run it.

    Example:
        ```python
        run = generate_and_run(history, my_llm_generator)
        ```
    """
    resolved = settings or load_settings()
    programs = registry or ProgramRegistry.from_settings(resolved)
    program = programs.get(select_program(conversation, program_id, programs))
    code = strip_code_fences(generator.generate(conversation, program))
    if not code:
        logger.warning("Code generator returned no source for %s", program.display_name)
        result = ExecutionResult.failure(ErrorKind.CODE_MISSING, "Failed to generate simulation code")
    else:
        result = run_simulation(
            code,
            program.id,
            options=options,
            settings=resolved,
            registry=programs,
            dispatcher=dispatcher,
        )
    return SimulationRun(
        result=result,
        program_id=program.id,
        program_name=program.display_name,
        code=code,
    )
