"""CLI entry point for the theme runner."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from theme_runner.ledger.result_ledger import LedgerSummary, ResultLedger
from theme_runner.models.config import RunnerConfig
from theme_runner.models.job_result import RunMode
from theme_runner.orchestrator import Orchestrator

console = Console()

DEFAULT_CONFIG = "theme-runner.json"


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def load_config(path: str, overrides: dict | None = None) -> RunnerConfig:
    """Load the JSON config if present, then apply non-None CLI overrides.

    A missing config file is only an error when the user named one explicitly.
    """
    config_path = Path(path)
    if config_path.exists():
        cfg = RunnerConfig.load(config_path)
    elif path != DEFAULT_CONFIG:
        raise FileNotFoundError(f"Config file not found: {path}")
    else:
        cfg = RunnerConfig()
    update = {k: v for k, v in (overrides or {}).items() if v is not None}
    if update:
        # Re-validate so CLI values obey the same constraints as the file
        cfg = RunnerConfig(**{**cfg.model_dump(), **update})
    return cfg


def print_summary(summary: LedgerSummary, ledger_path: Path) -> None:
    table = Table(title="Results Summary")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Subjects", str(summary.total))
    table.add_row("PASS", f"[green]{summary.passed}[/green]")
    table.add_row("NO-PASS", f"[red]{summary.no_pass}[/red]")
    table.add_row("No verdict", f"[yellow]{summary.errored}[/yellow]")
    console.print(table)

    if summary.reasons:
        reasons = Table(title="Reasons")
        reasons.add_column("Code", style="bold")
        reasons.add_column("Count", justify="right")
        for code, count in summary.reasons.items():
            reasons.add_row(code, str(count))
        console.print(reasons)

    console.print(f"  Ledger: [blue]{ledger_path}[/blue]")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Batch add-to-cart visual regression runner for storefront themes."""
    setup_logging(verbose)


@cli.command()
@click.argument("name_filter", required=False)
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
@click.option("--subjects", "-s", default=None, help="Subject CSV (overrides config)")
@click.option("--out", "-o", default=None, help="Output directory (overrides config)")
@click.option("--concurrency", "-n", type=int, default=None, help="Parallel jobs")
@click.option("--resume", is_flag=True, help="Skip subjects already in the ledger")
@click.option("--fix", "fix_error", default=None, help="Re-run subjects whose error contains this text")
@click.option("--debug", is_flag=True, help="Headed browser with devtools, windows left open")
@click.option("--hold", is_flag=True, help="In debug mode, keep each slot busy until its page is closed")
def run(
    name_filter: str | None,
    config: str,
    subjects: str | None,
    out: str | None,
    concurrency: int | None,
    resume: bool,
    fix_error: str | None,
    debug: bool,
    hold: bool,
) -> None:
    """Run the verification procedure over the subject list."""
    if resume and fix_error is not None:
        console.print("[red]--resume and --fix cannot be combined[/red]")
        sys.exit(1)

    overrides = {
        "subjects_csv": subjects,
        "output_dir": out,
        "concurrency": concurrency,
        "debug": True if debug or hold else None,
        "hold_debug_slot": True if hold else None,
    }
    try:
        cfg = load_config(config, overrides)
    except FileNotFoundError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        console.print("Run 'theme-runner init' to create a default config.")
        sys.exit(1)
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {escape(str(e))}")
        sys.exit(1)

    if fix_error is not None:
        if not fix_error.strip():
            console.print("[red]--fix needs a non-empty error text[/red]")
            sys.exit(1)
        mode = RunMode.fix(fix_error)
    elif resume:
        mode = RunMode.resume()
    else:
        mode = RunMode.fresh()

    orchestrator = Orchestrator(cfg, mode=mode, name_filter=name_filter)
    try:
        summary = orchestrator.run()
    except FileNotFoundError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)

    console.print("\n[bold green]Run Complete[/bold green]")
    print_summary(summary, cfg.ledger_path)


@cli.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def summary(config: str) -> None:
    """Print verdict totals and reason counts from the ledger."""
    try:
        cfg = load_config(config)
    except FileNotFoundError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)
    ledger = ResultLedger(cfg.ledger_path)
    if not ledger.exists():
        console.print(f"[yellow]No ledger at {ledger.path}[/yellow]")
        return
    print_summary(ledger.summarize(), ledger.path)


@cli.command()
@click.option("--config", "-c", default=DEFAULT_CONFIG, help="Config file path")
def compact(config: str) -> None:
    """Keep only the latest row per subject in the ledger."""
    try:
        cfg = load_config(config)
    except FileNotFoundError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)
    ledger = ResultLedger(cfg.ledger_path)
    if not ledger.exists():
        console.print(f"[yellow]No ledger at {ledger.path}[/yellow]")
        return
    dropped = ledger.compact()
    console.print(f"[green]Compacted {ledger.path}:[/green] {dropped} duplicate row(s) dropped")


@cli.command()
@click.option("--subjects", "-s", default="themes.csv", help="Subject CSV path")
@click.option("--refresh-script", default=None, help="JS bundle exposing window.refreshCart")
def init(subjects: str, refresh_script: str | None) -> None:
    """Create a default configuration file."""
    config_path = Path(DEFAULT_CONFIG)
    if config_path.exists():
        if not click.confirm(f"{DEFAULT_CONFIG} already exists. Overwrite?"):
            return

    cfg = RunnerConfig(subjects_csv=subjects, refresh_script=refresh_script)
    cfg.save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nYou can now customize this file and run:")
    console.print("  [blue]theme-runner run[/blue]")
    console.print("  [blue]theme-runner run --resume[/blue]")


if __name__ == "__main__":
    cli()
