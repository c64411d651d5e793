#!/usr/bin/env python3
"""
Aegis CLI Interface
Command-line interface for the Aegis portfolio scanner
"""

import asyncio
import traceback
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from aegis.core.compliance import ComplianceEngine
from aegis.core.config import ScanConfig
from aegis.core.engine import ScanEngine
from aegis.core.errors import PersistenceError, ScanRunFailed
from aegis.core.events import CompositeObserver
from aegis.core.model import ComplianceSummary, PortfolioSummary, ScanStatus
from aegis.core.result_manager import ResultManager
from aegis.utils.logger import AuditObserver, setup_logger
from aegis.utils.progress_manager import ProgressObserver
from aegis.utils.report import ReportGenerator

app = typer.Typer(
    name="aegis",
    help="Aegis portfolio security scanner and compliance checker",
    no_args_is_help=True,
)

console = Console()

SEVERITY_STYLES = {"critical": "red bold", "high": "red", "medium": "yellow", "low": "blue"}
PRIORITY_STYLES = {"CRITICAL": "red bold", "HIGH": "red", "MEDIUM": "yellow", "LOW": "blue"}


def split_csv(value: Optional[str]) -> Optional[List[str]]:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config(config_path: Optional[str], **overrides) -> ScanConfig:
    try:
        return ScanConfig.load(config_path, **overrides)
    except FileNotFoundError:
        console.print(f"[red]ERROR: Config file {config_path} not found[/red]")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]ERROR: Invalid config file {config_path}: {e}[/red]")
        raise typer.Exit(1)


def build_engine(config: ScanConfig, verbose: int, audit_log: Optional[str]) -> ScanEngine:
    observers = [ProgressObserver(console, verbosity=verbose)]
    if audit_log:
        observers.append(AuditObserver(audit_log))
    return ScanEngine(config=config, observer=CompositeObserver(observers))


def posture_label(score: float) -> str:
    if score >= 80:
        return "GOOD"
    if score >= 60:
        return "FAIR"
    return "POOR"


def print_portfolio(summary: PortfolioSummary) -> None:
    average = "n/a" if summary.average_score is None else f"{summary.average_score:g}"
    console.print(Panel(
        f"Targets: {summary.total_targets}  |  Findings: {summary.total_findings}  |  "
        f"Average score: {average}  |  Status: {summary.compliance_status}",
        title=f"Portfolio Summary ({summary.status.value})",
        border_style="cyan",
    ))

    severity_table = Table(title="Findings by Severity", show_header=True, header_style="bold magenta")
    severity_table.add_column("Severity", style="cyan")
    severity_table.add_column("Count", justify="right")
    for severity, count in summary.counts_by_severity.items():
        severity_table.add_row(f"[{SEVERITY_STYLES[severity]}]{severity.upper()}[/]", str(count))
    console.print(severity_table)

    target_table = Table(title="Targets", show_header=True, header_style="bold magenta")
    target_table.add_column("Target", style="cyan")
    target_table.add_column("Findings", justify="right")
    target_table.add_column("Score", justify="right")
    for report in summary.reports:
        target_table.add_row(report.target.identifier, str(len(report.findings)), f"{report.score:g}")
    for identifier, error in summary.errors.items():
        target_table.add_row(identifier, "-", f"[red]ERROR[/red] {escape(error)}")
    console.print(target_table)

    if summary.recommendations:
        rec_table = Table(title="Recommendations", show_header=True, header_style="bold magenta")
        rec_table.add_column("Priority")
        rec_table.add_column("Type", style="cyan")
        rec_table.add_column("Targets", justify="right")
        rec_table.add_column("Recommendation")
        for rec in summary.recommendations:
            style = PRIORITY_STYLES[rec.priority.value]
            rec_table.add_row(f"[{style}]{rec.priority.value}[/]", rec.finding_type,
                              str(rec.affected_target_count), rec.text)
        console.print(rec_table)

    for item in summary.action_items:
        console.print(f"[{PRIORITY_STYLES[item.priority.value]}]{item.priority.value}[/] "
                      f"{item.title} (score {item.current_score:g}, due {item.due_date.isoformat()})")


def print_compliance(summary: ComplianceSummary) -> None:
    console.print(Panel(
        f"Overall score: {summary.overall_score:g}  |  Status: {summary.status}",
        title="Compliance Summary",
        border_style="cyan",
    ))

    for framework in summary.frameworks:
        table = Table(title=f"{framework.framework} ({framework.score:g}, {framework.status})",
                      show_header=True, header_style="bold magenta")
        table.add_column("Check", style="cyan")
        table.add_column("Weight", justify="right")
        table.add_column("Score", justify="right")
        table.add_column("Status")
        table.add_column("Details")
        for check in framework.checks:
            table.add_row(check.name, f"{check.weight:g}", f"{check.score:g}", check.status, check.message)
        console.print(table)

    for rec in summary.recommendations:
        console.print(f"[{PRIORITY_STYLES[rec.priority.value]}]{rec.priority.value}[/] "
                      f"{rec.framework} / {rec.check}: {rec.text}")


@app.command()
def scan(
    target: Optional[List[str]] = typer.Option(
        None, "--target", "-t",
        help="Target repository path to scan (repeatable)"
    ),
    scope_file: Optional[str] = typer.Option(
        None, "--scope-file", "-s",
        help="File containing one target per line"
    ),
    detectors: Optional[str] = typer.Option(
        None, "--detectors", "-d",
        help="Comma-separated list of detectors to run (default: all)"
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c",
        help="Maximum concurrent targets and detector runs"
    ),
    output_dir: Optional[str] = typer.Option(
        None, "--output-dir", "-o",
        help="Output directory for reports"
    ),
    config_path: Optional[str] = typer.Option(
        None, "--config",
        help="JSON configuration file overlaid on the defaults"
    ),
    webhook_url: Optional[str] = typer.Option(
        None, "--webhook-url",
        help="Webhook URL that receives alert payloads"
    ),
    audit_log: Optional[str] = typer.Option(
        None, "--audit-log",
        help="Write an audit trail of scan events to this file"
    ),
    log_file: Optional[str] = typer.Option(
        None, "--log-file",
        help="Detailed log file (default: logs/aegis_scan_<timestamp>.log)"
    ),
    verbose: int = typer.Option(
        1, "--verbose", "-v",
        help="Verbosity level: 0=minimal, 1=standard, 2=debug"
    ),
):
    """Run a portfolio security scan against the specified target(s)."""

    targets = list(target or [])
    if scope_file:
        try:
            with open(scope_file, "r", encoding="utf-8") as f:
                targets.extend(line.strip() for line in f if line.strip() and not line.startswith("#"))
        except FileNotFoundError:
            console.print(f"[red]ERROR: Scope file {scope_file} not found[/red]")
            raise typer.Exit(1)

    if not targets:
        console.print("[red]ERROR: Provide at least one --target or a --scope-file[/red]")
        raise typer.Exit(1)

    config = load_config(config_path, concurrency=concurrency, output_dir=output_dir,
                         alert_webhook_url=webhook_url)
    setup_logger(verbose, log_file=log_file)

    try:
        engine = build_engine(config, verbose, audit_log)
        run = asyncio.run(engine.run_scan(targets, split_csv(detectors)))

        if run.status is ScanStatus.FAILED:
            console.print(f"[red]Scan failed: {run.reason}[/red]")
            for identifier, error in run.errors.items():
                console.print(f"  {identifier}: {error}")
            raise typer.Exit(1)

        summary = run.summary
        print_portfolio(summary)

        try:
            reports = ResultManager(config.output_dir).generate_reports(summary)
            generator = ReportGenerator(config.output_dir)
            reports["csv"] = generator.generate_csv_report(summary)
            reports["summary"] = generator.generate_summary_report(summary)
        except (PersistenceError, OSError) as e:
            console.print(f"[yellow]Reports not written: {e}[/yellow]")
            return

        for kind, path in reports.items():
            console.print(f"[green]{kind.upper()} report:[/green] {path}")

    except typer.Exit:
        raise
    except KeyboardInterrupt:
        console.print("[yellow]Scan interrupted by user[/yellow]")
        raise typer.Exit(1)
    except ScanRunFailed as e:
        console.print(f"[red]Scan failed: {e.reason}[/red]")
        if e.cause is not None:
            console.print(f"[red]Cause: {e.cause}[/red]")
        if verbose >= 2:
            console.print(traceback.format_exc())
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Scan failed: {e}[/red]")
        if verbose >= 2:
            console.print(traceback.format_exc())
        raise typer.Exit(1)


@app.command()
def compliance(
    framework: Optional[List[str]] = typer.Option(
        None, "--framework", "-f",
        help="Only run the named framework (repeatable)"
    ),
    config_path: Optional[str] = typer.Option(
        None, "--config",
        help="JSON configuration file overlaid on the defaults"
    ),
    verbose: int = typer.Option(1, "--verbose", "-v", help="Verbosity level"),
):
    """Run the configured compliance frameworks."""
    config = load_config(config_path)

    try:
        engine = ComplianceEngine(config, observer=ProgressObserver(console, verbosity=verbose))
        unknown = [name for name in (framework or []) if engine.get_framework(name) is None]
        if unknown:
            console.print(f"[red]ERROR: Unknown framework(s): {', '.join(unknown)}[/red]")
            raise typer.Exit(1)

        summary = asyncio.run(engine.run_full_check(framework_names=framework))
        print_compliance(summary)

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"[red]Compliance check failed: {e}[/red]")
        if verbose >= 2:
            console.print(traceback.format_exc())
        raise typer.Exit(1)


@app.command()
def quick(
    target: str = typer.Option(..., "--target", "-t", help="Target repository path"),
    config_path: Optional[str] = typer.Option(None, "--config", help="JSON configuration file"),
    verbose: int = typer.Option(0, "--verbose", "-v", help="Verbosity level"),
):
    """Quick security and compliance assessment of a single target."""
    config = load_config(config_path)

    async def assess():
        engine = build_engine(config, verbose, None)
        run = await engine.run_scan([target])
        compliance_summary = await engine.run_compliance_check()
        return run, compliance_summary

    try:
        run, compliance_summary = asyncio.run(assess())
    except ScanRunFailed as e:
        console.print(f"[red]Assessment failed: {e.reason}[/red]")
        raise typer.Exit(1)

    if run.status is ScanStatus.FAILED:
        console.print(f"[red]Assessment failed: {'; '.join(run.errors.values()) or run.reason}[/red]")
        raise typer.Exit(1)

    report = run.summary.reports[0]
    posture = posture_label(report.score)
    style = {"GOOD": "green", "FAIR": "yellow", "POOR": "red"}[posture]

    table = Table(title=f"Quick Assessment: {report.target.identifier}", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Security score", f"{report.score:g}")
    table.add_row("Security posture", f"[{style}]{posture}[/]")
    table.add_row("Findings", str(len(report.findings)))
    table.add_row("Critical findings", str(run.summary.critical_count))
    table.add_row("Compliance score", f"{compliance_summary.overall_score:g}")
    table.add_row("Compliance status", compliance_summary.status)
    console.print(table)

    for text in report.recommendations[:3]:
        console.print(f"  - {text}")


@app.command("list-detectors")
def list_detectors():
    """List all available detectors."""
    from aegis.core.detector_loader import DetectorLoader

    loader = DetectorLoader()
    loader.load_all_detectors()

    if not loader.loaded_detectors:
        console.print("[yellow]No detectors found[/yellow]")
        raise typer.Exit(1)

    console.print("[cyan]Available Detectors:[/cyan]\n")
    for name, metadata in sorted(loader.detector_metadata.items()):
        console.print(f"  [green]✓[/green] {metadata['id']} - {metadata['name']} "
                      f"({metadata['category']}, {metadata['severity_hint']})")


@app.command()
def version():
    """Show version information."""
    from aegis import __version__, __author__
    console.print(f"Aegis Portfolio Scanner v{__version__}")
    console.print(f"By {__author__}")


if __name__ == "__main__":
    app()
