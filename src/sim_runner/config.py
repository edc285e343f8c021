from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

DEFAULT_URL_PREFIX = "/outputs/simulations"
DEFAULT_KILL_GRACE_SECONDS = 5.0
DEFAULT_MAX_OUTPUT_KB = 128
REMOTE_TIMEOUT_MARGIN_SECONDS = 30.0
_ENDPOINT_SUFFIX = "_MCP_ENDPOINT"
_TRUTHY = {"1", "true", "yes", "on"}
_OVERRIDE_KEYS = {"executable", "timeout_seconds", "max_concurrent", "base_args"}


def _default_output_dir() -> Path:
    """Return the default artifact directory under the working directory.

    Example:
        ```python
        out = _default_output_dir()
        ```
    """
    return Path.cwd() / "outputs" / "simulations"


def _as_bool(value: Any) -> bool:
    """Interpret TOML booleans and env-style strings.

    Example:
        ```python
        assert _as_bool("true") is True
        ```
    """
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUTHY


def _positive_float(value: Any, field_name: str) -> float:
    """Validate a strictly positive number.

    Example:
        ```python
        seconds = _positive_float("2.5", "kill_grace_seconds")
        ```
    """
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{field_name}' must be a number") from exc
    if number <= 0:
        raise ValueError(f"'{field_name}' must be greater than zero")
    return number


def _table(raw: Mapping[str, Any], name: str) -> dict[str, Any]:
    """Return a TOML sub-table or an empty dict.

    Example:
        ```python
        runner = _table({"runner": {"use_remote": True}}, "runner")
        ```
    """
    value = raw.get(name, {})
    if not isinstance(value, dict):
        raise ValueError(f"'{name}' must be a TOML table")
    return value


def normalize_program_override(program_id: str, raw: Mapping[str, Any]) -> dict[str, Any]:
    """Validate one `[programs.<id>]` override table.

    Example:
        ```python
        override = normalize_program_override("blender", {"timeout_seconds": 1200})
        ```
    """
    unknown = set(raw) - _OVERRIDE_KEYS
    if unknown:
        raise ValueError(
            f"Unknown keys for program '{program_id}': {', '.join(sorted(unknown))}"
        )
    out: dict[str, Any] = {}
    if "executable" in raw:
        executable = str(raw["executable"]).strip()
        if not executable:
            raise ValueError(f"'executable' for program '{program_id}' must not be empty")
        out["executable"] = executable
    if "timeout_seconds" in raw:
        out["timeout_seconds"] = _positive_float(raw["timeout_seconds"], "timeout_seconds")
    if "max_concurrent" in raw:
        max_concurrent = int(raw["max_concurrent"])
        if max_concurrent < 0:
            raise ValueError("'max_concurrent' must be zero (unbounded) or positive")
        out["max_concurrent"] = max_concurrent
    if "base_args" in raw:
        args = raw["base_args"]
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise ValueError("'base_args' must be a list of strings")
        out["base_args"] = tuple(args)
    return out


@dataclass(frozen=True, slots=True)
class RunnerSettings:
    """Process-wide orchestrator settings.

    Example:
        ```python
        settings = RunnerSettings(output_dir=Path("/tmp/out"), use_remote=True,
                                  remote_endpoints={"python": "http://sim-py:8001"})
        ```
    """

    output_dir: Path = field(default_factory=_default_output_dir)
    code_dir: Path | None = None
    url_prefix: str = DEFAULT_URL_PREFIX
    use_remote: bool = False
    remote_endpoints: dict[str, str] = field(default_factory=dict)
    remote_timeout_seconds: float | None = None
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS
    max_output_kb: int = DEFAULT_MAX_OUTPUT_KB
    program_overrides: dict[str, dict[str, Any]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate numeric limits after initialization.

        Example:
            ```python
            RunnerSettings(kill_grace_seconds=1.0)
            ```
        """
        if self.kill_grace_seconds <= 0:
            raise ValueError("kill_grace_seconds must be greater than zero")
        if self.max_output_kb <= 0:
            raise ValueError("max_output_kb must be greater than zero")
        if self.remote_timeout_seconds is not None and self.remote_timeout_seconds <= 0:
            raise ValueError("remote_timeout_seconds must be greater than zero")

    @property
    def source_dir(self) -> Path:
        """Directory where generated source files are written.

        Example:
            ```python
            path = settings.source_dir
            ```
        """
        return self.code_dir if self.code_dir is not None else self.output_dir / "code"

    def endpoint_for(self, program_id: str) -> str | None:
        """Return the configured remote endpoint for a program, if any.

        Example:
            ```python
            url = settings.endpoint_for("matlab")
            ```
        """
        endpoint = self.remote_endpoints.get(program_id)
        if not endpoint:
            return None
        return endpoint.rstrip("/")

    def url_for(self, artifact: Path) -> str:
        """Build the public URL for an artifact file.

        Example:
            ```python
            url = settings.url_for(Path("/srv/out/simulation_1.mp4"))
            ```
        """
        return f"{self.url_prefix.rstrip('/')}/{artifact.name}"

    def client_timeout_for(self, program_timeout_seconds: float) -> float:
        """Client-side HTTP timeout for a remote run.

        The remote service enforces the program timeout itself, so the client
        waits a margin longer before giving up.

        Example:
            ```python
            seconds = settings.client_timeout_for(300)
            ```
        """
        if self.remote_timeout_seconds is not None:
            return self.remote_timeout_seconds
        return program_timeout_seconds + REMOTE_TIMEOUT_MARGIN_SECONDS

    @classmethod
    def from_file(cls, config_path: str | Path, base: "RunnerSettings | None" = None) -> "RunnerSettings":
        """Overlay settings from a TOML file.

        Recognized tables: `[runner]`, `[remote]` (program id -> URL) and
        `[programs.<id>]`.

        Example:
            ```python
            settings = RunnerSettings.from_file("/etc/sim-runner.toml")
            ```
        """
        current = base or cls()
        raw = tomllib.loads(Path(config_path).read_text(encoding="utf-8"))
        runner = _table(raw, "runner")
        remote = _table(raw, "remote")
        programs = _table(raw, "programs")

        updates: dict[str, Any] = {}
        if "output_dir" in runner:
            updates["output_dir"] = Path(str(runner["output_dir"])).expanduser()
        if "code_dir" in runner:
            updates["code_dir"] = Path(str(runner["code_dir"])).expanduser()
        if "url_prefix" in runner:
            updates["url_prefix"] = str(runner["url_prefix"])
        if "use_remote" in runner:
            updates["use_remote"] = _as_bool(runner["use_remote"])
        if "remote_timeout_seconds" in runner:
            updates["remote_timeout_seconds"] = _positive_float(
                runner["remote_timeout_seconds"], "remote_timeout_seconds"
            )
        if "kill_grace_seconds" in runner:
            updates["kill_grace_seconds"] = _positive_float(
                runner["kill_grace_seconds"], "kill_grace_seconds"
            )
        if "max_output_kb" in runner:
            updates["max_output_kb"] = int(runner["max_output_kb"])
        if remote:
            endpoints = dict(current.remote_endpoints)
            endpoints.update({str(k): str(v) for k, v in remote.items()})
            updates["remote_endpoints"] = endpoints
        if programs:
            overrides = {k: dict(v) for k, v in current.program_overrides.items()}
            for program_id, table in programs.items():
                if not isinstance(table, dict):
                    raise ValueError(f"'programs.{program_id}' must be a TOML table")
                overrides.setdefault(program_id, {}).update(
                    normalize_program_override(program_id, table)
                )
            updates["program_overrides"] = overrides
        return replace(current, **updates)

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        base: "RunnerSettings | None" = None,
    ) -> "RunnerSettings":
        """Overlay global settings and remote endpoints from environment variables.

        Per-program executable/timeout overrides are read by the registry.

        Example:
            ```python
            settings = RunnerSettings.from_env({"USE_MCP_SIMULATION": "true",
                                                "PYTHON_MCP_ENDPOINT": "http://sim-py:8001"})
            ```
        """
        env = os.environ if environ is None else environ
        current = base or cls()
        updates: dict[str, Any] = {}
        if env.get("SIMULATION_OUTPUT_DIR"):
            updates["output_dir"] = Path(env["SIMULATION_OUTPUT_DIR"]).expanduser()
        if env.get("SIMULATION_CODE_DIR"):
            updates["code_dir"] = Path(env["SIMULATION_CODE_DIR"]).expanduser()
        if env.get("SIMULATION_URL_PREFIX"):
            updates["url_prefix"] = env["SIMULATION_URL_PREFIX"]
        if "USE_MCP_SIMULATION" in env:
            updates["use_remote"] = _as_bool(env["USE_MCP_SIMULATION"])
        if env.get("MCP_CLIENT_TIMEOUT_SECONDS"):
            updates["remote_timeout_seconds"] = _positive_float(
                env["MCP_CLIENT_TIMEOUT_SECONDS"], "MCP_CLIENT_TIMEOUT_SECONDS"
            )
        if env.get("SIM_KILL_GRACE_SECONDS"):
            updates["kill_grace_seconds"] = _positive_float(
                env["SIM_KILL_GRACE_SECONDS"], "SIM_KILL_GRACE_SECONDS"
            )

        endpoints = dict(current.remote_endpoints)
        for key, value in env.items():
            if key.endswith(_ENDPOINT_SUFFIX) and value.strip():
                endpoints[key[: -len(_ENDPOINT_SUFFIX)].lower()] = value.strip()
        if endpoints != current.remote_endpoints:
            updates["remote_endpoints"] = endpoints
        return replace(current, **updates)


def load_settings(
    config_path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> RunnerSettings:
    """Resolve settings from defaults, an optional TOML file, then environment.

    Example:
        ```python
        settings = load_settings("/etc/sim-runner.toml")
        ```
    """
    settings = RunnerSettings()
    if config_path is not None:
        settings = RunnerSettings.from_file(config_path, base=settings)
    return RunnerSettings.from_env(environ, base=settings)
