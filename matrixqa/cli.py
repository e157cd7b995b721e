"""CLI entry point for matrixqa."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from matrixqa.baseline.store import BaselineStore
from matrixqa.checks.registry import CheckRegistry, load_object
from matrixqa.drivers.filesystem import FileSystemDriver, FileSystemProbe
from matrixqa.errors import BaselineConflict, ConfigInvalid
from matrixqa.models.config import RunConfig
from matrixqa.models.device import DeviceProfile
from matrixqa.models.report import RunStatus
from matrixqa.models.screenshot import Screenshot
from matrixqa.orchestrator import Orchestrator

console = Console()

_STATUS_STYLES = {
    RunStatus.PASSED: "green",
    RunStatus.FAILED: "red",
    RunStatus.NEW_BASELINE: "blue",
}


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def parse_profile(value: str) -> DeviceProfile:
    """Parse ``family,os_version[,locale[,form_factor]]``."""
    parts = [p.strip() for p in value.split(",")]
    if len(parts) < 2 or not all(parts):
        raise click.BadParameter(f"expected 'family,os_version[,locale[,form_factor]]', got '{value}'")
    keys = ("family", "os_version", "locale", "form_factor")
    return DeviceProfile(**dict(zip(keys, parts)))


def _load_config(config: str) -> RunConfig:
    try:
        return RunConfig.load(config)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {config}[/red]")
        console.print("Run 'matrixqa init' to create a default config.")
        sys.exit(1)
    except ConfigInvalid as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(2)


def _suite_checks(declared: dict) -> CheckRegistry:
    """Register the suite's ``{"name": {"category": ..., "target": "module:attr"}}`` checks."""
    checks = CheckRegistry()
    problems = []
    for name, entry in declared.items():
        try:
            checks.register_path(name, entry["category"], entry["target"])
        except KeyError as e:
            problems.append(f"checks.{name}: missing {e.args[0]!r}")
        except (TypeError, ValueError, ImportError, AttributeError) as e:
            problems.append(f"checks.{name}: {e}")
    if problems:
        raise ConfigInvalid(problems)
    return checks


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Device-matrix visual regression and performance gate"""
    setup_logging(verbose)


@cli.command()
@click.option("--config", "-c", default="matrixqa.json", help="Config file path")
def init(config: str) -> None:
    """Create a default configuration file."""
    config_path = Path(config)
    if config_path.exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            return
    RunConfig().save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nDescribe test cases and devices in a suite file, then run:")
    console.print("  [blue]matrixqa run --suite suite.json --captures ./captures[/blue]")


@cli.command()
@click.option("--config", "-c", default="matrixqa.json", help="Config file path")
@click.option("--suite", "-s", required=True, help="Suite JSON: test_cases, device_matrix, checks")
@click.option("--captures", type=click.Path(file_okay=False), help="Directory replayed by the file driver")
@click.option("--samples", type=click.Path(file_okay=False), help="Directory of performance samples")
@click.option("--driver", "driver_path", help="UI driver factory as module:attribute")
@click.option("--record-metrics", is_flag=True, help="Store passing runs' metrics as the new baseline")
def run(config: str, suite: str, captures: str | None, samples: str | None,
        driver_path: str | None, record_metrics: bool) -> None:
    """Run the suite across the device matrix and gate the results."""
    cfg = _load_config(config)
    if record_metrics:
        cfg.record_metrics = True

    with open(suite) as f:
        suite_data = json.load(f)

    if driver_path:
        driver = load_object(driver_path)()
    elif captures:
        driver = FileSystemDriver(captures)
    else:
        raise click.UsageError("Either --captures or --driver is required")
    probe = FileSystemProbe(samples) if samples else None

    try:
        checks = _suite_checks(suite_data.get("checks", {}))
        for name in checks.names():
            if name not in cfg.checks:
                cfg.checks.append(name)
        orchestrator = Orchestrator.from_config(cfg, driver, probe=probe, checks=checks)
        report = orchestrator.submit(
            suite_data.get("test_cases", []),
            suite_data.get("device_matrix", []),
        )
    except ConfigInvalid as e:
        console.print("[red]Submission rejected:[/red]")
        for problem in e.problems:
            console.print(f"  - {problem}")
        sys.exit(2)

    reports = orchestrator.publish_reports(report)

    table = Table(title=f"Run {report.run_id}")
    table.add_column("Test case", style="bold")
    table.add_column("Device")
    table.add_column("Status")
    table.add_column("Diff")
    table.add_column("Attempts")
    table.add_column("Reason")
    for entry in report.entries:
        style = _STATUS_STYLES.get(entry.status, "white")
        diff = entry.diff_result
        ratio = f"{diff.diff_ratio:.2%}" if diff and diff.diff_ratio is not None else "-"
        flaky = " (flaky)" if entry.flaky else ""
        table.add_row(
            entry.test_case_id,
            entry.device_profile.label,
            f"[{style}]{entry.status.value}{flaky}[/{style}]",
            ratio,
            str(entry.attempts),
            entry.failure_reason or "",
        )
    console.print(table)
    console.print(
        f"{report.passed} passed, [red]{report.failed} failed[/red], "
        f"[blue]{report.new_baselines} new baseline(s)[/blue], {report.flaky} flaky "
        f"in {report.duration_seconds}s"
    )
    for fmt, path in reports.items():
        console.print(f"  {fmt.upper()} report: [blue]{path}[/blue]")

    if not report.overall_pass:
        sys.exit(1)


@cli.group()
def baseline() -> None:
    """Manage approved baselines."""
    pass


@baseline.command("approve")
@click.option("--config", "-c", default="matrixqa.json", help="Config file path")
@click.option("--screen", required=True, help="Screen id")
@click.option("--device", required=True, help="family,os_version[,locale[,form_factor]]")
@click.option("--image", required=True, type=click.Path(exists=True, dir_okay=False), help="PNG to approve")
@click.option("--approver", required=True, help="Who approved this baseline")
@click.option("--release", "release_version", default=None, help="Release version (default: next vN)")
def baseline_approve(config: str, screen: str, device: str, image: str,
                     approver: str, release_version: str | None) -> None:
    """Approve an image as a new baseline version."""
    cfg = _load_config(config)
    profile = parse_profile(device)
    store = BaselineStore(Path(cfg.baselines_dir))
    try:
        approved = store.approve(screen, profile, Screenshot.from_png(image), approver, release_version)
    except BaselineConflict as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print(
        f"[green]Approved[/green] {approved.release_version} for {screen} on {profile.label} "
        f"({approved.image.width}x{approved.image.height})"
    )


@baseline.command("list")
@click.option("--config", "-c", default="matrixqa.json", help="Config file path")
@click.option("--screen", default=None, help="Only this screen id")
@click.option("--device", default=None, help="Only this device (family,os_version[,locale[,form_factor]])")
def baseline_list(config: str, screen: str | None, device: str | None) -> None:
    """List approved baseline versions, newest first."""
    cfg = _load_config(config)
    store = BaselineStore(Path(cfg.baselines_dir))
    profile = parse_profile(device) if device else None

    table = Table(title="Baselines")
    table.add_column("Screen", style="bold")
    table.add_column("Device")
    table.add_column("Version")
    table.add_column("Size")
    table.add_column("Approved")
    table.add_column("Approver")
    rows = 0
    for screen_id, key_profile in store.keys():
        if screen and screen_id != screen:
            continue
        if profile and key_profile != profile:
            continue
        for b in store.list_versions(screen_id, key_profile):
            table.add_row(screen_id, key_profile.label, b.release_version,
                          f"{b.image.width}x{b.image.height}", b.approved_at, b.approver)
            rows += 1
    if not rows:
        console.print("[yellow]No baselines found[/yellow]")
        return
    console.print(table)


if __name__ == "__main__":
    cli()
