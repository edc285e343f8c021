from pathlib import Path

from sim_runner import Backend, Dispatcher, ErrorKind, ExecutionRequest, ExecutionResult, LocalEngine, RunnerSettings
from sim_runner.errors import RemoteError, RemoteUnavailableError


class _RecordingLocal:
    def __init__(self) -> None:
        self.requests: list[ExecutionRequest] = []

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        self.requests.append(request)
        return ExecutionResult(success=True, output_file_path=Path("/out/simulation_1.mp4"))


class _FakeRemote:
    def __init__(self, *, raises: Exception | None = None, result: ExecutionResult | None = None,
                 programs: tuple[str, ...] = ("python",)) -> None:
        self.raises = raises
        self.result = result
        self.programs = programs
        self.calls = 0

    def supports(self, program_id: str) -> bool:
        return program_id in self.programs

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        self.calls += 1
        if self.raises is not None:
            raise self.raises
        assert self.result is not None
        return self.result


def _request(program_id: str = "python") -> ExecutionRequest:
    return ExecutionRequest.create(
        program_id, "print(1)", output_dir="/out", timeout_seconds=300, options={"steps": 10}
    )


def test_network_error_falls_back_to_local_with_identical_request() -> None:
    local = _RecordingLocal()
    remote = _FakeRemote(raises=RemoteUnavailableError("Connection refused"))
    request = _request()

    result = Dispatcher(local, remote, use_remote=True).dispatch(request)

    assert result.success is True
    assert remote.calls == 1
    assert len(local.requests) == 1
    forwarded = local.requests[0]
    assert forwarded.program_id == request.program_id
    assert forwarded.source_code == request.source_code
    assert forwarded.options == {"steps": 10}


def test_http_error_and_unexpected_exception_fall_back() -> None:
    for error in (RemoteError("Remote returned 500", status_code=500), RuntimeError("boom")):
        local = _RecordingLocal()
        remote = _FakeRemote(raises=error)
        Dispatcher(local, remote, use_remote=True).dispatch(_request())
        assert remote.calls == 1
        assert len(local.requests) == 1


def test_remote_logical_failure_is_returned_as_is() -> None:
    failure = ExecutionResult.failure(ErrorKind.NO_ARTIFACT, "No output file generated", backend=Backend.REMOTE)
    local = _RecordingLocal()
    result = Dispatcher(local, _FakeRemote(result=failure), use_remote=True).dispatch(_request())
    assert result is failure
    assert local.requests == []


def test_remote_disabled_goes_local() -> None:
    local = _RecordingLocal()
    remote = _FakeRemote(result=ExecutionResult(success=True))
    Dispatcher(local, remote, use_remote=False).dispatch(_request())
    assert remote.calls == 0
    assert len(local.requests) == 1


def test_program_without_endpoint_goes_local() -> None:
    local = _RecordingLocal()
    remote = _FakeRemote(result=ExecutionResult(success=True))
    dispatcher = Dispatcher(local, remote, use_remote=True)
    assert dispatcher.wants_remote("blender") is False
    dispatcher.dispatch(_request("blender"))
    assert remote.calls == 0
    assert len(local.requests) == 1


def test_missing_code_is_rejected_before_any_backend() -> None:
    local = _RecordingLocal()
    remote = _FakeRemote(result=ExecutionResult(success=True))
    request = ExecutionRequest.create("python", "", output_dir="/out", timeout_seconds=5)
    result = Dispatcher(local, remote, use_remote=True).dispatch(request)
    assert result.error_kind is ErrorKind.CODE_MISSING
    assert remote.calls == 0
    assert local.requests == []


def test_remote_spawn_failure_falls_back_to_local() -> None:
    failure = ExecutionResult.failure(
        ErrorKind.SPAWN_FAILED, "Failed to start matlab: not found", backend=Backend.REMOTE
    )
    local = _RecordingLocal()
    remote = _FakeRemote(result=failure)
    request = _request()

    result = Dispatcher(local, remote, use_remote=True).dispatch(request)

    assert remote.calls == 1
    assert len(local.requests) == 1
    assert local.requests[0].source_code == request.source_code
    assert result.success is True
    assert result.backend is Backend.LOCAL


class _RaisingLocal:
    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        raise UnicodeEncodeError("utf-8", "\ud800", 0, 1, "surrogates not allowed")


def test_local_exception_becomes_failed_result() -> None:
    result = Dispatcher(_RaisingLocal()).dispatch(_request())
    assert result.success is False
    assert result.error_kind is ErrorKind.SPAWN_FAILED
    assert result.backend is Backend.LOCAL
    assert "Local execution failed" in (result.error or "")


def test_unencodable_source_through_real_local_engine(tmp_path: Path) -> None:
    settings = RunnerSettings(output_dir=tmp_path / "out", code_dir=tmp_path / "code")
    dispatcher = Dispatcher(LocalEngine(settings=settings))
    request = ExecutionRequest.create(
        "python", "print('\ud800')", output_dir=settings.output_dir, timeout_seconds=5
    )
    result = dispatcher.dispatch(request)
    assert result.success is False
    assert result.error_kind is ErrorKind.SPAWN_FAILED
