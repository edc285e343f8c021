from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table
from rich_argparse import RawTextRichHelpFormatter
from sim_runner import ProgramRegistry, RemoteEngine, load_settings, run_simulation, select_program
from sim_runner.errors import RemoteError, RemoteUnavailableError
from sim_runner.execution.wire import result_to_wire
from sim_runner.programs import available_programs
from sim_runner.service import serve

_CONSOLE = Console(no_color=False)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="python -m simr")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {message}", border_style="red"))
        self.print_help()
        raise SystemExit(2)


def _parse_option(raw: str) -> tuple[str, str]:
    """Split a `key=value` program option.

    Example:
        ```python
        key, value = _parse_option("frames=120")
        ```
    """
    key, sep, value = raw.partition("=")
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError(f"Options must look like key=value, got '{raw}'")
    return key.strip(), value


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for sim-runner operations.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m simr",
        description=(
            "sim-runner CLI\n"
            "Run generated simulation code with local tools or remote services."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m simr programs\n"
            "  python -m simr detect \"animate it in matlab with simulink\"\n"
            "  python -m simr run scene.py --program blender\n"
            "  python -m simr run plot.plt --program gnuplot --option frames=60\n"
            "  python -m simr health python\n"
            "  python -m simr serve python --port 8001"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--config",
        help=(
            "TOML settings file with [runner], [remote] and [programs.<id>] tables.\n"
            "Environment variables override file values."
        ),
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING). DEBUG echoes child output.",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    sub.add_parser(
        "programs",
        help="List supported programs and whether they are installed.",
        description=(
            "Show the program registry.\n"
            "Includes executable, timeout, availability on PATH, and remote endpoint."
        ),
        formatter_class=_HELP_FORMATTER,
    )

    detect_cmd = sub.add_parser(
        "detect",
        help="Pick the program a conversation asks for.",
        description="Score free text against program keywords and print the winner.",
        formatter_class=_HELP_FORMATTER,
    )
    detect_cmd.add_argument("text", nargs="+")

    run_cmd = sub.add_parser(
        "run",
        help="Execute a source file and locate its artifact.",
        description=(
            "Run one source file with the selected program.\n"
            "Without --program, the program is detected from the file contents."
        ),
        epilog=(
            "Examples:\n"
            "  python -m simr run sim.py\n"
            "  python -m simr run graph.dot --program graphviz\n"
            "  python -m simr run scene.py --program blender --timeout-seconds 1800 --local"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("source", help="Path to the source file to execute.")
    run_cmd.add_argument("--program", help="Program id (see `programs`).")
    run_cmd.add_argument(
        "--timeout-seconds",
        type=float,
        help="Override the program's timeout for this run.",
    )
    run_cmd.add_argument(
        "--option",
        action="append",
        default=[],
        type=_parse_option,
        metavar="KEY=VALUE",
        help="Program option passed through SIM_OPTIONS / the remote body. Repeatable.",
    )
    backend = run_cmd.add_mutually_exclusive_group()
    backend.add_argument("--remote", action="store_true", help="Prefer configured remote services.")
    backend.add_argument("--local", action="store_true", help="Never use remote services.")

    health_cmd = sub.add_parser(
        "health",
        help="Probe a program's remote service.",
        description="Call GET /health on the configured remote endpoint.",
        formatter_class=_HELP_FORMATTER,
    )
    health_cmd.add_argument("program")

    serve_cmd = sub.add_parser(
        "serve",
        help="Run one program's HTTP microservice.",
        description=(
            "Serve GET /health and POST /execute for one program.\n"
            "Port defaults to <ID>_MCP_PORT or the built-in table."
        ),
        epilog=(
            "Examples:\n"
            "  python -m simr serve python\n"
            "  python -m simr serve blender --host 127.0.0.1 --port 9003"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    serve_cmd.add_argument("program")
    serve_cmd.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0).")
    serve_cmd.add_argument("--port", type=int, help="Listen port.")

    return parser


def _configure_logging(level: str) -> None:
    """Route library logging through Rich.

    Example:
        ```python
        _configure_logging("INFO")
        ```
    """
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=_CONSOLE, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _print_programs(registry: ProgramRegistry, endpoints: dict[str, str]) -> None:
    """Render the registry in a rich table.

    Example:
        ```python
        _print_programs(DEFAULT_REGISTRY, {})
        ```
    """
    availability = {row.id: row for row in available_programs(registry)}
    table = Table(title="Programs")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="magenta")
    table.add_column("Executable")
    table.add_column("Timeout")
    table.add_column("Installed")
    table.add_column("Remote")
    for program in registry:
        row = availability[program.id]
        table.add_row(
            program.id,
            program.display_name,
            row.executable,
            f"{program.timeout_seconds:g}s",
            "[green]yes[/green]" if row.available else "[red]no[/red]",
            endpoints.get(program.id, "-"),
        )
    _CONSOLE.print(table)


def _print_result(body: dict[str, Any], ok: bool) -> None:
    """Render a run result panel.

    Example:
        ```python
        _print_result({"success": True, "outputFile": "simulation_1.mp4"}, True)
        ```
    """
    title = "Run Succeeded" if ok else "Run Failed"
    style = "green" if ok else "red"
    _CONSOLE.print(Panel.fit(Pretty(body), title=title, border_style=style))


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `simr` CLI command handler.

    Example:
        ```python
        code = main(["detect", "render", "it", "in", "blender"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.log_level)
    settings = load_settings(args.config)
    registry = ProgramRegistry.from_settings(settings)

    if args.command == "programs":
        _print_programs(registry, settings.remote_endpoints)
        return 0
    if args.command == "detect":
        program_id = select_program(" ".join(args.text), registry=registry)
        program = registry.get(program_id)
        _CONSOLE.print(Panel.fit(f"{program.display_name} ({program.id})", title="Detected Program", style="bold cyan"))
        return 0
    if args.command == "run":
        source = Path(args.source)
        if not source.is_file():
            _CONSOLE.print(Panel.fit(f"Source file not found: {source}", style="bold red"))
            return 1
        if args.program and args.program not in registry:
            _CONSOLE.print(Panel.fit(f"Unknown program '{args.program}'", style="bold red"))
            return 1
        if args.remote:
            settings = replace(settings, use_remote=True)
        elif args.local:
            settings = replace(settings, use_remote=False)
        code = source.read_text(encoding="utf-8")
        result = run_simulation(
            code,
            args.program,
            conversation=code,
            options=dict(args.option),
            timeout_seconds=args.timeout_seconds,
            settings=settings,
            registry=registry,
        )
        body = result_to_wire(result)
        body["backend"] = result.backend.value
        _print_result(body, result.success)
        return 0 if result.success else 1
    if args.command == "health":
        try:
            body = RemoteEngine(settings=settings).health(args.program)
        except (RemoteUnavailableError, RemoteError) as exc:
            _CONSOLE.print(Panel.fit(str(exc), title="Health", style="bold red"))
            return 1
        _CONSOLE.print(Panel.fit(Pretty(body), title="Health", border_style="green"))
        return 0
    if args.command == "serve":
        if args.program not in registry:
            _CONSOLE.print(Panel.fit(f"Unknown program '{args.program}'", style="bold red"))
            return 1
        serve(args.program, host=args.host, port=args.port, settings=settings, log_level=args.log_level.lower())
        return 0

    parser.error("Unhandled command")
    return 2
