from __future__ import annotations

import logging
from typing import Protocol

from .engine import ExecutionEngine
from .types import Backend, ErrorKind, ExecutionRequest, ExecutionResult

logger = logging.getLogger(__name__)


class RemoteCapableEngine(ExecutionEngine, Protocol):
    def supports(self, program_id: str) -> bool:
        """Whether this engine can run the given program.

        Example:
            ```python
            ok = remote.supports("python")
            ```
        """
        ...


class Dispatcher:
    """Choose remote or local execution and fall back once on remote failure.

    Example:
        ```python
        dispatcher = Dispatcher(LocalEngine(), remote=RemoteEngine(settings=settings), use_remote=True)
        ```
    """

    def __init__(
        self,
        local: ExecutionEngine,
        remote: RemoteCapableEngine | None = None,
        *,
        use_remote: bool = False,
    ) -> None:
        """Initialize with a local engine and an optional remote engine.

        Example:
            ```python
            dispatcher = Dispatcher(local_engine)
            ```
        """
        self._local = local
        self._remote = remote
        self._use_remote = use_remote

    def wants_remote(self, program_id: str) -> bool:
        """Whether a request for `program_id` is sent to the remote engine first.

        Example:
            ```python
            remote_first = dispatcher.wants_remote("matlab")
            ```
        """
        return self._use_remote and self._remote is not None and self._remote.supports(program_id)

    def dispatch(self, request: ExecutionRequest) -> ExecutionResult:
        """Run one request and always return a terminal result.

        Remote exceptions (network, non-2xx, anything raised) and a remote
        `spawn_failed` result trigger exactly one local run of the same
        request; any other remote `success: false` result is returned as-is.
        Exceptions from the local engine become failed results.

        Example:
            ```python
            result = dispatcher.dispatch(request)
            ```
        """
        if not request.source_code or not request.source_code.strip():
            return ExecutionResult.failure(ErrorKind.CODE_MISSING, "Code is required")

        remote = self._remote
        if remote is not None and self.wants_remote(request.program_id):
            try:
                result = remote.execute(request)
            except Exception as exc:  # any remote failure falls back to local
                logger.warning(
                    "Remote execution failed for %s (%s); falling back to local execution",
                    request.program_id,
                    exc,
                )
            else:
                if result.error_kind is not ErrorKind.SPAWN_FAILED:
                    return result
                logger.warning(
                    "Remote service could not start %s (%s); falling back to local execution",
                    request.program_id,
                    result.error,
                )
        try:
            return self._local.execute(request)
        except Exception as exc:
            logger.exception("Local execution of %s raised", request.program_id)
            return ExecutionResult.failure(
                ErrorKind.SPAWN_FAILED,
                f"Local execution failed: {exc}",
                backend=Backend.LOCAL,
            )
