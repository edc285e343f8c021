from .engine import ExecutionEngine
from .types import Backend, ErrorKind, ExecutionRequest, ExecutionResult

__all__ = [
    "Backend",
    "ErrorKind",
    "ExecutionEngine",
    "ExecutionRequest",
    "ExecutionResult",
]
