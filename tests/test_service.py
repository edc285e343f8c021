from __future__ import annotations

import textwrap
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from sim_runner import ErrorKind, ExecutionRequest, ExecutionResult, ProgramRegistry, RunnerSettings
from sim_runner.service import create_app, service_port


class _FakeEngine:
    def __init__(self, result: ExecutionResult) -> None:
        self.result = result
        self.requests: list[ExecutionRequest] = []

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        self.requests.append(request)
        return self.result


def _client(settings: RunnerSettings, registry: ProgramRegistry, engine=None) -> TestClient:
    return TestClient(create_app("python", settings=settings, registry=registry, port=8001, engine=engine))


def test_health(settings: RunnerSettings, python_registry: ProgramRegistry) -> None:
    response = _client(settings, python_registry).get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "python-mcp", "port": 8001}


@pytest.mark.parametrize("payload", [{}, {"code": ""}, {"code": "   "}, {"options": {"a": 1}}])
def test_execute_requires_code(settings: RunnerSettings, python_registry: ProgramRegistry, payload: dict) -> None:
    engine = _FakeEngine(ExecutionResult(success=True))
    response = _client(settings, python_registry, engine).post("/execute", json=payload)
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Code is required"}
    assert engine.requests == []


def test_execute_passes_program_timeout_and_options(
    settings: RunnerSettings, python_registry: ProgramRegistry
) -> None:
    engine = _FakeEngine(
        ExecutionResult(
            success=True,
            output_file_path=settings.output_dir / "simulation_1.mp4",
            output_url="/outputs/simulations/simulation_1.mp4",
            stdout="ok",
            exit_code=0,
        )
    )
    response = _client(settings, python_registry, engine).post(
        "/execute", json={"code": "print(1)", "options": {"fps": 30}}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["outputFile"] == "simulation_1.mp4"
    assert body["url"] == "/outputs/simulations/simulation_1.mp4"
    request = engine.requests[0]
    assert request.program_id == "python"
    assert request.timeout_seconds == python_registry.get("python").timeout_seconds
    assert request.options == {"fps": 30}
    assert request.output_dir == settings.output_dir


def test_execution_failure_is_http_200(settings: RunnerSettings, python_registry: ProgramRegistry) -> None:
    engine = _FakeEngine(ExecutionResult.failure(ErrorKind.EXECUTION_TIMEOUT, "Python execution timeout (300s)"))
    response = _client(settings, python_registry, engine).post("/execute", json={"code": "while True: pass"})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["errorKind"] == "execution_timeout"
    assert body["error"] == "Python execution timeout (300s)"


def test_execute_runs_code_locally(settings: RunnerSettings, python_registry: ProgramRegistry) -> None:
    code = textwrap.dedent(
        """
        import os
        with open(os.environ["OUTPUT_PATH"], "wb") as fh:
            fh.write(b"GIF89a")
        """
    )
    response = _client(settings, python_registry).post("/execute", json={"code": code})

    body = response.json()
    assert body["success"] is True, body
    assert Path(body["outputPath"]).is_file()
    assert body["url"].startswith("/outputs/simulations/simulation_")
    assert list(settings.source_dir.glob("*.py")) == []


def test_service_port_resolution() -> None:
    assert service_port("blender", {}) == 8003
    assert service_port("processing", {}) == 8010
    assert service_port("blender", {"BLENDER_MCP_PORT": "9100"}) == 9100


def test_execute_honors_shorter_request_timeout(settings: RunnerSettings, python_registry: ProgramRegistry) -> None:
    engine = _FakeEngine(ExecutionResult(success=True))
    client = _client(settings, python_registry, engine)
    client.post("/execute", json={"code": "print(1)", "timeoutSeconds": 7})
    client.post("/execute", json={"code": "print(1)", "timeoutSeconds": 99999})

    budget = python_registry.get("python").timeout_seconds
    assert engine.requests[0].timeout_seconds == 7
    assert engine.requests[1].timeout_seconds == budget


def test_execute_rejects_non_positive_timeout(settings: RunnerSettings, python_registry: ProgramRegistry) -> None:
    engine = _FakeEngine(ExecutionResult(success=True))
    response = _client(settings, python_registry, engine).post("/execute", json={"code": "print(1)", "timeoutSeconds": 0})
    assert response.status_code == 422
    assert engine.requests == []


def test_unencodable_source_is_a_failed_result(settings: RunnerSettings, python_registry: ProgramRegistry) -> None:
    response = _client(settings, python_registry).post(
        "/execute",
        content=b'{"code": "print(\'\\ud800\')"}',
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["errorKind"] == "spawn_failed"


def test_engine_exception_is_a_failed_result(settings: RunnerSettings, python_registry: ProgramRegistry) -> None:
    class _BrokenEngine:
        def execute(self, request: ExecutionRequest) -> ExecutionResult:
            raise RuntimeError("boom")

    response = _client(settings, python_registry, _BrokenEngine()).post("/execute", json={"code": "print(1)"})
    assert response.status_code == 200
    assert response.json()["success"] is False
    assert "boom" in response.json()["error"]
