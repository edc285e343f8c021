from __future__ import annotations

import io
from pathlib import Path

import pytest
from rich.console import Console

from sim_runner import ErrorKind, ExecutionResult, RunnerSettings
from sim_runner.errors import RemoteUnavailableError
from simr import cli


@pytest.fixture(autouse=True)
def _patch_settings(monkeypatch: pytest.MonkeyPatch, settings: RunnerSettings) -> None:
    monkeypatch.setattr(cli, "load_settings", lambda config_path=None: settings)


def test_cli_detect(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["detect", "animate", "it", "in", "matlab", "with", "simulink"])
    output = capsys.readouterr().out
    assert code == 0
    assert "MATLAB (matlab)" in output


def test_cli_detect_defaults_to_python(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["detect", "no", "keywords", "here"])
    assert code == 0
    assert "Python (python)" in capsys.readouterr().out


def test_cli_programs(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setattr(cli, "_CONSOLE", Console(width=200))
    code = cli.main(["programs"])
    output = capsys.readouterr().out
    assert code == 0
    assert "blender" in output
    assert "graphviz" in output


def test_cli_run_success(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], tmp_path: Path
) -> None:
    calls: list[dict] = []

    def _fake_run(code, program_id=None, **kwargs):
        calls.append({"code": code, "program_id": program_id, **kwargs})
        return ExecutionResult(success=True, output_file_path=Path("/out/simulation_1.png"), exit_code=0)

    monkeypatch.setattr(cli, "run_simulation", _fake_run)
    source = tmp_path / "graph.plt"
    source.write_text("plot sin(x)", encoding="utf-8")

    code = cli.main(
        ["run", str(source), "--program", "gnuplot", "--option", "frames=60", "--timeout-seconds", "9", "--remote"]
    )

    assert code == 0
    assert "Run Succeeded" in capsys.readouterr().out
    call = calls[0]
    assert call["code"] == "plot sin(x)"
    assert call["program_id"] == "gnuplot"
    assert call["options"] == {"frames": "60"}
    assert call["timeout_seconds"] == 9
    assert call["settings"].use_remote is True


def test_cli_run_failure_exit_code(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], tmp_path: Path
) -> None:
    monkeypatch.setattr(
        cli,
        "run_simulation",
        lambda code, program_id=None, **kwargs: ExecutionResult.failure(ErrorKind.NO_ARTIFACT, "no output"),
    )
    source = tmp_path / "sim.py"
    source.write_text("print(1)", encoding="utf-8")
    code = cli.main(["run", str(source), "--local"])
    assert code == 1
    assert "Run Failed" in capsys.readouterr().out


def test_cli_run_missing_source(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    code = cli.main(["run", str(tmp_path / "missing.py")])
    assert code == 1
    assert "Source file not found" in capsys.readouterr().out


def test_cli_run_unknown_program(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    source = tmp_path / "sim.py"
    source.write_text("print(1)", encoding="utf-8")
    code = cli.main(["run", str(source), "--program", "fortran"])
    assert code == 1
    assert "Unknown program 'fortran'" in capsys.readouterr().out


def test_cli_health(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    class _HealthyRemote:
        def __init__(self, **kwargs) -> None:
            self.kwargs = kwargs

        def health(self, program_id: str) -> dict:
            return {"status": "ok", "service": f"{program_id}-mcp", "port": 8001}

    monkeypatch.setattr(cli, "RemoteEngine", _HealthyRemote)
    code = cli.main(["health", "python"])
    assert code == 0
    assert "python-mcp" in capsys.readouterr().out


def test_cli_health_unreachable(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    class _DownRemote:
        def __init__(self, **kwargs) -> None:
            pass

        def health(self, program_id: str) -> dict:
            raise RemoteUnavailableError("No remote endpoint configured for 'python'")

    monkeypatch.setattr(cli, "RemoteEngine", _DownRemote)
    code = cli.main(["health", "python"])
    assert code == 1
    assert "No remote endpoint" in capsys.readouterr().out


def test_cli_serve(monkeypatch: pytest.MonkeyPatch) -> None:
    served: list[tuple] = []
    monkeypatch.setattr(cli, "serve", lambda program_id, **kwargs: served.append((program_id, kwargs)))
    code = cli.main(["serve", "blender", "--port", "9003"])
    assert code == 0
    program_id, kwargs = served[0]
    assert program_id == "blender"
    assert kwargs["port"] == 9003
    assert kwargs["host"] == "0.0.0.0"
    assert kwargs["log_level"] == "warning"


def test_cli_rejects_bad_option(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["run", "sim.py", "--option", "novalue"])
    assert exc.value.code == 2


def test_cli_top_level_help_examples(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["--help"])
    output = capsys.readouterr().out
    assert exc.value.code == 0
    assert "Quick Examples:" in output
    assert "python -m simr programs" in output


def test_cli_print_help_writes_to_requested_stream(capsys: pytest.CaptureFixture[str]) -> None:
    parser = cli.build_parser()
    buffer = io.StringIO()
    parser.print_help(file=buffer)
    assert capsys.readouterr().out == ""
    help_text = buffer.getvalue()
    assert "Usage:" in help_text
    assert "sim-runner CLI" in help_text
