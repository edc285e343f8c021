from __future__ import annotations

from typing import Protocol

from .types import ExecutionRequest, ExecutionResult


class ExecutionEngine(Protocol):
    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute one request and return its terminal result.

        Example:
            ```python
            result = engine.execute(ExecutionRequest.create("python", code, output_dir="/tmp/out", timeout_seconds=5))
            ```
        """
        ...
