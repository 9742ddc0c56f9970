from __future__ import annotations

import argparse
import asyncio
import dataclasses
import shutil
import sys
from functools import partial
from pathlib import Path
from typing import Any, Never, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.markup import escape
from rich.table import Table
from rich.text import Text
from rich_argparse import RawTextRichHelpFormatter
from safe_code_runner import (
    ExecutionOutcome,
    ExecutionRequest,
    Orchestrator,
    RunnerConfig,
    UnsupportedLanguageError,
    build_orchestrator,
)
from safe_code_runner.execution.docker_engine import container_image_is_available, container_runtime_is_available
from safe_code_runner.languages import LanguageProfile, Placeholder
from safe_code_runner.logging_utils import setup_logging

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
        parser = _RichArgumentParser(prog="python -m scr")
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


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for running snippets through the sandbox orchestrator.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    parser = _RichArgumentParser(
        prog="python -m scr",
        description=(
            "safe-code-runner CLI\n"
            "Run untrusted snippets through the same orchestrator a service would use:\n"
            "admission limits, per-step deadlines, and throwaway workspaces."
        ),
        epilog=(
            "Quick Examples:\n"
            "  python -m scr languages\n"
            "  python -m scr run --language python hello.py\n"
            "  echo 'console.log(1)' | python -m scr run --language js -\n"
            "  python -m scr batch a.py b.cpp Main.java\n"
            "  python -m scr doctor\n\n"
            "Container Examples:\n"
            "  python -m scr --container run --language cpp main.cpp\n"
            "  python -m scr --config /etc/safe-code-runner.toml batch *.py"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "--config",
        help=(
            "Path to a TOML config file with a [runner] table.\n"
            "Example: --config /etc/safe-code-runner.toml"
        ),
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Maximum number of executions running at once (default: 100).",
    )
    parser.add_argument(
        "--timeout-seconds",
        type=float,
        help="Wall-clock deadline for each run step (default: 5).",
    )
    parser.add_argument(
        "--container",
        action="store_true",
        help=(
            "Delegate every language to its runner image.\n"
            "Requires the code-runner-* images and a container runtime."
        ),
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level for orchestrator diagnostics (default: WARNING).",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit log records as JSON lines.",
    )

    sub = parser.add_subparsers(
        dest="command",
        required=True,
        parser_class=_RichArgumentParser,
    )

    sub.add_parser(
        "languages",
        help="List supported languages and their build/run steps.",
        description="Show every registered language profile.",
        formatter_class=_HELP_FORMATTER,
    )

    run_cmd = sub.add_parser(
        "run",
        help="Run one source file (or stdin) and show its output.",
        description=(
            "Run one snippet and print stdout, stderr and the outcome.\n"
            "Exits 0 when the program succeeded, 1 otherwise."
        ),
        epilog=(
            "Examples:\n"
            "  python -m scr run --language python hello.py\n"
            "  python -m scr run main.cpp"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    run_cmd.add_argument("source", help="Source file path, or '-' to read stdin.")
    run_cmd.add_argument(
        "--language",
        help="Language identifier (default: inferred from the file extension).",
    )

    batch_cmd = sub.add_parser(
        "batch",
        help="Run several files concurrently and show invocation counters.",
        description=(
            "Submit every file at once; admission control bounds how many run together.\n"
            "Prints one row per file followed by the per-language request counters."
        ),
        formatter_class=_HELP_FORMATTER,
    )
    batch_cmd.add_argument("sources", nargs="+", help="Source file paths.")
    batch_cmd.add_argument(
        "--language",
        help="Language identifier for every file (default: inferred per file).",
    )

    sub.add_parser(
        "doctor",
        help="Check which interpreters, compilers and runtimes are reachable.",
        description="Report whether each language's programs can be found on this host.",
        formatter_class=_HELP_FORMATTER,
    )

    return parser


def build_config(args: argparse.Namespace) -> RunnerConfig:
    """Create a RunnerConfig from the config file and global CLI flags.

    Example:
        ```python
        config = build_config(args)
        ```
    """
    config = RunnerConfig.from_file(args.config) if args.config else RunnerConfig()
    overrides: dict[str, Any] = {}
    if args.concurrency is not None:
        overrides["concurrency"] = args.concurrency
    if args.timeout_seconds is not None:
        overrides["timeout_seconds"] = args.timeout_seconds
    if args.container:
        overrides["container_languages"] = ["*"]
    return dataclasses.replace(config, **overrides) if overrides else config


def _read_source(parser: argparse.ArgumentParser, path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        parser.error(f"Cannot read source file {path}: {exc}")


def _status_text(outcome: ExecutionOutcome) -> str:
    if outcome.ok:
        return "[bold green]ok[/bold green]"
    kind = outcome.error_kind.value if outcome.error_kind else "error"
    return f"[bold red]{kind}[/bold red]"


def _print_outcome(outcome: ExecutionOutcome) -> None:
    """Render one outcome as stdout/stderr panels plus a status line.

    Example:
        ```python
        _print_outcome(outcome)
        ```
    """
    if outcome.stdout:
        _CONSOLE.print(Panel(Text(outcome.stdout.rstrip("\n")), title="stdout", border_style="cyan"))
    if outcome.stderr:
        _CONSOLE.print(Panel(Text(outcome.stderr.rstrip("\n")), title="stderr", border_style="red"))
    exit_status = "-" if outcome.exit_status is None else str(outcome.exit_status)
    _CONSOLE.print(
        f"{escape(outcome.language)}: {_status_text(outcome)} (exit {exit_status}, {outcome.wall_ms} ms)"
    )


def _print_languages(profiles: Sequence[LanguageProfile]) -> None:
    table = Table(title="Languages")
    table.add_column("ID", style="cyan")
    table.add_column("Kind", style="magenta")
    table.add_column("Ext")
    table.add_column("Build")
    table.add_column("Run")
    for profile in profiles:
        build = "\n".join(str(step) for step in profile.build_steps) or "-"
        table.add_row(profile.id, profile.kind.value, profile.file_extension, build, str(profile.run_step))
    _CONSOLE.print(table)


def _profile_programs(profile: LanguageProfile) -> list[str]:
    programs: list[str] = []
    for step in (*profile.build_steps, profile.run_step):
        if not isinstance(step.program, Placeholder):
            programs.append(step.program)
    return programs


def _doctor(config: RunnerConfig, profiles: Sequence[LanguageProfile]) -> int:
    """Render a reachability table for each language's programs.

    Example:
        ```python
        code = _doctor(config, orchestrator.registry.profiles())
        ```
    """
    table = Table(title="Runtime Doctor")
    table.add_column("Language", style="cyan")
    table.add_column("Requires")
    table.add_column("Status")
    failures = 0
    for profile in profiles:
        if profile.delegated:
            ok, reason = container_runtime_is_available(config.container_runtime)
            image = profile.image or ""
            if ok and not container_image_is_available(image, config.container_runtime):
                ok, reason = False, f"image {image} not found; build it first"
            requires = f"{config.container_runtime} + {image}"
            detail = "[green]ready[/green]" if ok else f"[red]{escape(reason or '')}[/red]"
        else:
            programs = _profile_programs(profile)
            missing = [program for program in programs if shutil.which(program) is None]
            ok = not missing
            requires = ", ".join(programs)
            detail = "[green]ready[/green]" if ok else f"[red]missing: {', '.join(missing)}[/red]"
        failures += 0 if ok else 1
        table.add_row(profile.id, requires, detail)
    _CONSOLE.print(table)
    return 0 if failures == 0 else 1


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `scr` CLI command handler.

    Example:
        ```python
        code = main(["run", "--language", "python", "hello.py"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    setup_logging(args.log_level, json_format=args.json_logs)
    try:
        config = build_config(args)
        orchestrator = build_orchestrator(config)
    except ValueError as exc:
        parser.error(str(exc))
    try:
        return _dispatch(args, parser, config, orchestrator)
    finally:
        orchestrator.close()


def _dispatch(args: argparse.Namespace, parser: argparse.ArgumentParser, config: RunnerConfig, orchestrator: Orchestrator) -> int:
    registry = orchestrator.registry

    if args.command == "languages":
        _print_languages(registry.profiles())
        return 0
    if args.command == "doctor":
        return _doctor(config, registry.profiles())
    if args.command == "run":
        language = args.language
        if language is None:
            if args.source == "-":
                parser.error("--language is required when reading from stdin")
            try:
                language = registry.language_for_extension(Path(args.source).suffix).value
            except UnsupportedLanguageError as exc:
                parser.error(str(exc))
        request = ExecutionRequest(language=language, source=_read_source(parser, args.source))
        outcome = asyncio.run(orchestrator.execute(request))
        _print_outcome(outcome)
        return 0 if outcome.ok else 1
    if args.command == "batch":
        requests: list[ExecutionRequest] = []
        for path in args.sources:
            language = args.language
            if language is None:
                try:
                    language = registry.language_for_extension(Path(path).suffix).value
                except UnsupportedLanguageError:
                    language = Path(path).suffix.lstrip(".") or path
            requests.append(ExecutionRequest(language=language, source=_read_source(parser, path)))
        outcomes = asyncio.run(orchestrator.execute_many(requests))

        results = Table(title="Batch Results")
        results.add_column("File", style="cyan")
        results.add_column("Language", style="magenta")
        results.add_column("Status")
        results.add_column("Exit")
        results.add_column("Wall ms")
        for path, outcome in zip(args.sources, outcomes):
            exit_status = "-" if outcome.exit_status is None else str(outcome.exit_status)
            results.add_row(escape(path), escape(outcome.language), _status_text(outcome), exit_status, str(outcome.wall_ms))
        _CONSOLE.print(results)

        counters = Table(title="Invocation Counters")
        counters.add_column("Language", style="cyan")
        counters.add_column("Requests")
        for language, count in sorted(orchestrator.tracker.snapshot().items()):
            counters.add_row(language, str(count))
        _CONSOLE.print(counters)
        return 0 if all(outcome.ok for outcome in outcomes) else 1

    parser.error("Unhandled command")
    return 2
