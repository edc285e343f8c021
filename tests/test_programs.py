import pytest

from sim_runner import DEFAULT_REGISTRY, ProgramRegistry, RunnerSettings, select_program
from sim_runner.errors import UnknownProgramError
from sim_runner.programs import DEFAULT_PROGRAMS, ProgramDefinition, keyword_score


def test_matlab_keywords_beat_default() -> None:
    assert keyword_score(DEFAULT_REGISTRY.get("matlab"), "let's use matlab and simulink") == 2
    assert select_program("let's use matlab and simulink") == "matlab"


def test_no_keywords_defaults_to_python() -> None:
    assert select_program("no keywords here") == "python"
    assert select_program("") == "python"


def test_matching_is_case_insensitive() -> None:
    assert select_program("Render it in BLENDER with BPY") == "blender"


def test_override_wins_when_registered() -> None:
    assert select_program("let's use matlab and simulink", override="julia") == "julia"


def test_unregistered_override_is_ignored() -> None:
    assert select_program("let's use matlab and simulink", override="fortran") == "matlab"


def test_ties_keep_declaration_order() -> None:
    # "graph" is a keyword of both gnuplot and graphviz; gnuplot is declared first.
    assert select_program("draw a graph") == "gnuplot"


def test_conversation_messages_are_concatenated() -> None:
    history = [
        {"role": "user", "content": "I want a math animation"},
        {"role": "assistant", "content": "Sure, in the 3blue1brown style?"},
        {"role": "user", "content": "yes, use manim"},
    ]
    assert select_program(history) == "manim"


def test_registry_preserves_declaration_order() -> None:
    assert DEFAULT_REGISTRY.ids == [p.id for p in DEFAULT_PROGRAMS]
    assert DEFAULT_REGISTRY.ids[0] == "python"
    assert len(DEFAULT_REGISTRY) == 10


def test_registry_rejects_duplicates() -> None:
    python = DEFAULT_REGISTRY.get("python")
    with pytest.raises(ValueError, match="Duplicate"):
        ProgramRegistry([python, python])


def test_unknown_program_raises() -> None:
    with pytest.raises(UnknownProgramError, match="fortran"):
        DEFAULT_REGISTRY.get("fortran")


def test_program_timeouts_differ_per_program() -> None:
    assert DEFAULT_REGISTRY.get("python").timeout_seconds == 300
    assert DEFAULT_REGISTRY.get("matlab").timeout_seconds == 600
    assert DEFAULT_REGISTRY.get("blender").timeout_seconds == 900


def test_file_and_env_overrides_are_applied() -> None:
    settings = RunnerSettings(program_overrides={"blender": {"timeout_seconds": 1200.0, "max_concurrent": 1}})
    registry = ProgramRegistry.from_settings(
        settings,
        environ={"BLENDER_PATH": "/opt/blender/blender", "R_TIMEOUT_SECONDS": "42"},
    )
    blender = registry.get("blender")
    assert blender.executable == "/opt/blender/blender"
    assert blender.timeout_seconds == 1200.0
    assert blender.max_concurrent == 1
    assert registry.get("r").timeout_seconds == 42.0
    assert DEFAULT_REGISTRY.get("blender").executable == "blender"


def test_overrides_for_unknown_program_are_rejected() -> None:
    settings = RunnerSettings(program_overrides={"fortran": {"timeout_seconds": 1.0}})
    with pytest.raises(ValueError, match="fortran"):
        ProgramRegistry.from_settings(settings, environ={})


def test_env_timeout_must_be_positive() -> None:
    with pytest.raises(ValueError, match="greater than zero"):
        ProgramRegistry.from_settings(RunnerSettings(), environ={"PYTHON_TIMEOUT_SECONDS": "0"})


def test_definitions_are_immutable() -> None:
    program: ProgramDefinition = DEFAULT_REGISTRY.get("python")
    with pytest.raises(AttributeError):
        program.timeout_seconds = 1  # type: ignore[misc]
