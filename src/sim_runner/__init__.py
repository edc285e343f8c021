from .config import RunnerSettings, load_settings
from .execution.dispatcher import Dispatcher
from .execution.local_engine import LocalEngine
from .execution.remote_engine import RemoteEngine
from .execution.types import Backend, ErrorKind, ExecutionRequest, ExecutionResult
from .programs import DEFAULT_REGISTRY, ProgramDefinition, ProgramRegistry, select_program
from .runner import generate_and_run, run_simulation

__all__ = [
    "Backend",
    "DEFAULT_REGISTRY",
    "Dispatcher",
    "ErrorKind",
    "ExecutionRequest",
    "ExecutionResult",
    "LocalEngine",
    "ProgramDefinition",
    "ProgramRegistry",
    "RemoteEngine",
    "RunnerSettings",
    "generate_and_run",
    "load_settings",
    "run_simulation",
    "select_program",
]
