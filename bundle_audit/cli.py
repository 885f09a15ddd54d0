"""Typer-based CLI wrapping the audit engine."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .audit import Audit
from .errors import ConfigurationError
from .graph_export import export_dot
from .models import AuditResult

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    help="Audit a finalized build output for bundle and module-graph problems.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

EXIT_FINDINGS = 1
EXIT_CONFIG = 2


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"bundle-audit v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    )
):
    """bundle-audit: verify reachability and bundle partitioning of a build output."""
    pass


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _run_audit(audit: Audit) -> AuditResult:
    try:
        return audit.run()
    except ConfigurationError as exc:
        err_console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=EXIT_CONFIG)


@app.command("run")
def run_audit(
    output_root: Path = typer.Argument(..., file_okay=False, help="Finalized build output directory."),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    """Run the audit and report findings. Exits non-zero when any are found."""
    _configure_logging(verbose)
    result = _run_audit(Audit(output_root))

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
    elif result.ok:
        console.print(
            f"[green]No findings.[/green] {len(result.modules)} module(s) in {len(result.bundles)} bundle(s)."
        )
    else:
        for finding in result.findings:
            typer.echo(str(finding))
        table = Table(title="Findings by kind")
        table.add_column("Kind")
        table.add_column("Count", justify="right")
        counts: dict = {}
        for finding in result.findings:
            counts[finding.kind.value] = counts.get(finding.kind.value, 0) + 1
        for kind, count in counts.items():
            table.add_row(kind, str(count))
        err_console.print(table)

    if not result.ok:
        raise typer.Exit(code=EXIT_FINDINGS)


@app.command("export-dot")
def export_dot_command(
    output_root: Path = typer.Argument(..., file_okay=False, help="Finalized build output directory."),
    output_file: Path = typer.Argument(..., dir_okay=False, help="Where to write the DOT graph."),
    focus: str = typer.Option("", "--focus", "-f", help="Only include modules whose id contains this text."),
):
    """Export the audited module graph as Graphviz DOT, clustered by bundle."""
    _configure_logging(False)
    audit = Audit(output_root)
    _run_audit(audit)
    export_dot(audit, output_file, focus=focus)
    typer.echo(f"Wrote {output_file}")
