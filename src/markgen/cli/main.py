"""CLI entry point for markgen.

Invoked as::

    markgen [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m markgen.cli.main

Commands
--------
version     Show version information
handlers    List handlers published by installed packages
plan        Discover and order units without processing them
run         Discover, order and process units, then report failures

Handlers are loaded from the ``markgen.handlers`` entry-point group
(configurable with ``handler_group`` in the config file).
"""
from __future__ import annotations

import json
import logging
import sys
from typing import TYPE_CHECKING

import click
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.syntax import Syntax
from rich.table import Table

if TYPE_CHECKING:
    from markgen.config import ProcessorConfig
    from markgen.core.processor import ProcessingReport, ProcessorFactory

console = Console()
err_console = Console(stderr=True)


def _load_config_or_exit(path: str | None) -> "ProcessorConfig":
    """Load the config file, exiting on error."""
    from markgen.config import ProcessorConfig, load_config

    if path is None:
        return ProcessorConfig()
    try:
        return load_config(path)
    except FileNotFoundError:
        err_console.print(f"[red]Error:[/red] Config file not found: {path}")
        sys.exit(1)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        err_console.print(f"[red]Error:[/red] Invalid config {path}: {exc}")
        sys.exit(1)


def _build_factory(
    config_path: str | None,
    packages: tuple[str, ...],
    test_mode: bool | None,
    strict: bool,
) -> "ProcessorFactory":
    """Build a factory with handlers loaded from entry-points."""
    from markgen.core.processor import ProcessorFactory

    config = _load_config_or_exit(config_path).with_overrides(
        packages=packages or None,
        test_mode=test_mode,
        strict_order=strict or None,
    )
    if not config.packages:
        err_console.print("[red]Error:[/red] No packages to scan. Pass PACKAGE or set 'packages' in the config.")
        sys.exit(1)

    factory = ProcessorFactory(config=config)
    factory.registry.load_entrypoints(config.handler_group)
    if not len(factory.registry):
        err_console.print(
            f"[yellow]Warning:[/yellow] No handlers found in entry-point group "
            f"{config.handler_group!r}."
        )
    return factory


def _state_color(state: str) -> str:
    """Map an EntryState value to a Rich color string."""
    colors = {
        "complete": "green",
        "stalled": "red",
        "retrying": "yellow",
        "pending": "dim",
    }
    return colors.get(state, "white")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="markgen")
@click.option("--verbose", "-v", count=True, help="Increase log verbosity (-v info, -vv debug)")
def cli(verbose: int) -> None:
    """Marker-driven dependency resolution and code-generation scheduling."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


# ---------------------------------------------------------------------------
# version command
# ---------------------------------------------------------------------------


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from markgen import __version__

    table = Table(show_header=False, box=None)
    table.add_row("[bold]markgen[/bold]", f"v{__version__}")
    table.add_row("Python", f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}")
    table.add_row("Platform", sys.platform)
    console.print(table)


# ---------------------------------------------------------------------------
# handlers command
# ---------------------------------------------------------------------------


@cli.command(name="handlers")
@click.option("--config", "config_path", default=None, help="YAML config file")
def handlers_command(config_path: str | None) -> None:
    """List handlers published by installed packages, in discovery order."""
    from markgen.core.errors import RuleCycleError
    from markgen.core.registry import HandlerRegistry

    config = _load_config_or_exit(config_path)
    registry = HandlerRegistry()
    registry.load_entrypoints(config.handler_group)

    if not len(registry):
        console.print("[bold]Registered handlers:[/bold]")
        console.print("  (No handlers registered. Install a handler package to see entries here.)")
        return

    try:
        markers = registry.marker_types()
    except RuleCycleError as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)

    table = Table(title="Registered handlers")
    table.add_column("#", justify="right")
    table.add_column("Marker", style="bold")
    table.add_column("Handler")
    table.add_column("Rules")
    for position, marker in enumerate(markers, start=1):
        rules = ", ".join(str(r) for r in registry.rules_for(marker)) or "-"
        table.add_row(str(position), f"@{marker.__name__}", type(registry.get(marker)).__qualname__, rules)
    console.print(table)


# ---------------------------------------------------------------------------
# plan command
# ---------------------------------------------------------------------------


@cli.command(name="plan")
@click.argument("packages", nargs=-1)
@click.option("--config", "config_path", default=None, help="YAML config file")
@click.option("--test-mode/--no-test-mode", default=None, help="Include TestOnly declarations")
@click.option("--strict", is_flag=True, default=False, help="Try a strict topological order first")
def plan_command(
    packages: tuple[str, ...],
    config_path: str | None,
    test_mode: bool | None,
    strict: bool,
) -> None:
    """Discover and order units without processing them.

    PACKAGES are the package scopes to scan.
    """
    from markgen.core.errors import MarkgenError
    from markgen.scanning import ModuleScanner

    factory = _build_factory(config_path, packages, test_mode, strict)
    try:
        plan = factory.plan(ModuleScanner())
    except (MarkgenError, ImportError) as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)

    table = Table(title="Processing order", show_lines=False)
    table.add_column("#", justify="right")
    table.add_column("Unit", style="bold")
    table.add_column("Items", justify="right")
    table.add_column("Depends on")
    forced = set(plan.schedule.forced)
    for position, unit in enumerate(plan.schedule.order, start=1):
        name = str(unit.key) + (" [yellow](forced)[/yellow]" if unit.key in forced else "")
        deps = ", ".join(str(d) for d in sorted(unit.dependencies)) or "-"
        table.add_row(str(position), name, str(len(unit.items)), deps)
    console.print(table)

    for cycle in plan.schedule.cycles:
        console.print(f"[yellow]Cycle:[/yellow] {' <-> '.join(str(k) for k in cycle)}")
    for key, missing in plan.missing_dependencies.items():
        console.print(
            f"[yellow]Missing:[/yellow] {key} requires {', '.join(str(m) for m in sorted(missing))}"
        )
    for error in plan.structural_errors:
        console.print(f"[red]Structural:[/red] {error}")


# ---------------------------------------------------------------------------
# run command
# ---------------------------------------------------------------------------


def _print_report(report: "ProcessingReport") -> None:
    table = Table(title="Processing report", show_lines=True)
    table.add_column("Marker", style="bold")
    table.add_column("State", min_width=10)
    table.add_column("Passes", justify="right")
    table.add_column("Processed", justify="right")
    table.add_column("Failures")
    for entry in report.entries:
        color = _state_color(entry.state.value)
        failures = "\n".join(str(f) for f in entry.errors) or "-"
        table.add_row(
            f"@{entry.marker}",
            f"[{color}]{entry.state.value}[/{color}]",
            str(entry.passes),
            str(entry.succeeded),
            failures,
        )
    console.print(table)
    for error in report.structural_errors:
        console.print(f"[red]Structural:[/red] {error}")
    pending = sum(len(keys) for keys in report.pending.values())
    console.print(
        f"\n[bold]Summary:[/bold] {len(report.order)} unit(s), "
        f"{len(report.cycles)} cycle(s), {pending} unprocessed declaration(s)"
    )


@cli.command(name="run")
@click.argument("packages", nargs=-1)
@click.option("--config", "config_path", default=None, help="YAML config file")
@click.option("--test-mode/--no-test-mode", default=None, help="Include TestOnly declarations")
@click.option("--strict", is_flag=True, default=False, help="Try a strict topological order first")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json", "yaml"], case_sensitive=False),
    default="table",
    help="Report output format",
)
def run_command(
    packages: tuple[str, ...],
    config_path: str | None,
    test_mode: bool | None,
    strict: bool,
    output_format: str,
) -> None:
    """Discover, order and process units.

    PACKAGES are the package scopes to scan.  Exits with status 1 when
    any declaration is left unprocessed.
    """
    from markgen.core.errors import MarkgenError
    from markgen.scanning import ModuleScanner

    factory = _build_factory(config_path, packages, test_mode, strict)
    try:
        report = factory.process(ModuleScanner())
    except (MarkgenError, ImportError) as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        sys.exit(1)

    if output_format == "json":
        console.print(Syntax(json.dumps(report.to_dict(), indent=2), "json"))
    elif output_format == "yaml":
        text = yaml.safe_dump(report.to_dict(), default_flow_style=False, sort_keys=False)
        console.print(Syntax(text, "yaml"))
    else:
        _print_report(report)

    if not report.succeeded:
        sys.exit(1)


if __name__ == "__main__":
    cli()
