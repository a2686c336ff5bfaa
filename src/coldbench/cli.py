"""Command-line interface for coldbench."""

from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from coldbench import __version__, jobs
from coldbench.cloudwatch import CloudWatchError, CloudWatchLogs
from coldbench.config import ConfigError, Settings
from coldbench.export import export_to_csv
from coldbench.invoker import Invoker
from coldbench.jobs import JobResult
from coldbench.log import configure_logging
from coldbench.models import BenchmarkEntry, ColdStartSummary, DurationSummary, Target
from coldbench.parser import parse_report_line
from coldbench.reconcile import ReconciliationOutcome
from coldbench.stats import summarize_cold_starts, summarize_durations
from coldbench.store import BenchmarkStore, StoreError

console = Console()


def format_duration(ms: float | None) -> str:
    """Format a duration in milliseconds for display."""
    if ms is None:
        return "-"
    if ms < 1:
        return f"{ms:.3f}ms"
    elif ms < 10:
        return f"{ms:.2f}ms"
    elif ms < 1000:
        return f"{ms:.1f}ms"
    else:
        return f"{ms/1000:.2f}s"


def fail(message: str) -> None:
    console.print(f"[red]Error: {message}[/red]")
    raise SystemExit(1)


def print_summary_table(title: str, durations: DurationSummary, cold_starts: ColdStartSummary | None) -> None:
    """Print duration and cold start figures of one target."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="dim")
    table.add_column("Duration", justify="right")
    table.add_column("Cold Start", justify="right")

    table.add_row("Mean", format_duration(durations.mean), format_duration(cold_starts.mean if cold_starts else None))
    table.add_row(
        "Median", format_duration(durations.median), format_duration(cold_starts.median if cold_starts else None)
    )
    table.add_row("p90", format_duration(durations.p90), format_duration(cold_starts.p90 if cold_starts else None))
    table.add_row("Rate", "", cold_starts.cold_start_percent if cold_starts else "[yellow]pending[/yellow]")

    console.print(table)


def print_job_result(result: JobResult) -> None:
    for name, stats in result.stats.items():
        print_summary_table(name, stats.durations, stats.cold_starts)
        console.print()
    for name, reason in result.failed.items():
        console.print(f"[red]{name} failed: {reason}[/red]")


def print_reconciliation(outcome: ReconciliationOutcome) -> None:
    table = Table(title="Reconciliation", show_header=True, header_style="bold cyan")
    table.add_column("Target", style="dim")
    table.add_column("Result", justify="right")

    for key in outcome.resolved:
        table.add_row(key, "[green]resolved[/green]")
    for key in outcome.still_pending:
        table.add_row(key, "[yellow]still pending[/yellow]")
    for key in outcome.evicted:
        table.add_row(key, "[red]abandoned[/red]")
    for key in outcome.failed:
        table.add_row(key, "[red]failed[/red]")

    if table.row_count:
        console.print(table)
    else:
        console.print("[dim]Nothing to reconcile.[/dim]")


def print_entries(runtime: str, entries: list[BenchmarkEntry]) -> None:
    table = Table(title=f"Benchmarks: {runtime}", show_header=True, header_style="bold cyan")
    table.add_column("Target", style="dim")
    table.add_column("Memory", justify="right")
    table.add_column("Arch", justify="right")
    table.add_column("Mean", justify="right")
    table.add_column("p90", justify="right")
    table.add_column("Cold Starts", justify="right")
    table.add_column("Init p90", justify="right")

    for entry in entries:
        stats = entry.stats
        cold = stats.cold_starts
        if entry.status:
            rate = f"[red]{entry.status}[/red]"
        elif cold is None:
            rate = "[yellow]pending[/yellow]"
        else:
            rate = cold.cold_start_percent

        table.add_row(
            entry.sort_key,
            f"{stats.metadata.memory_size}MB" if stats.metadata.memory_size else "-",
            "/".join(stats.metadata.architectures) or "-",
            format_duration(stats.durations.mean),
            format_duration(stats.durations.p90),
            rate,
            format_duration(cold.p90 if cold else None),
        )

    console.print(table)


@click.group(invoke_without_command=True)
@click.version_option(version=__version__)
@click.option("--region", default=None, help="AWS region. Uses AWS_REGION or the default region if not specified.")
@click.option("--table", "table_name", default=None, help="Benchmark table name. Default: TABLE_NAME")
@click.option("--log-level", default=None, help="Log level. Default: COLDBENCH_LOG_LEVEL or INFO")
@click.pass_context
def main(ctx, region: str | None, table_name: str | None, log_level: str | None):
    """coldbench: cold start benchmarks for AWS Lambda."""
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        fail(str(e))

    if region:
        settings.region = region
    if table_name:
        settings.table_name = table_name
    if log_level:
        settings.log_level = log_level.upper()

    configure_logging(settings.log_level, console=Console(stderr=True))
    ctx.obj = settings

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@main.command()
@click.option("--arn", "arns", multiple=True, help="Function to benchmark. Default: COMMA_SEP_ARNS")
@click.option("--iterations", "-n", type=int, default=None, help="Concurrent invocations per function.")
@click.pass_obj
def run(settings: Settings, arns: tuple[str, ...], iterations: int | None):
    """
    Invoke functions directly and store their stats.

    Examples:

        coldbench run --arn my-function -n 50
    """
    if arns:
        settings.direct_targets = [Target(identifier=arn, endpoint=arn) for arn in arns]
    if iterations:
        settings.iterations = iterations

    try:
        with console.status(f"[bold green]Invoking {len(settings.direct_targets)} functions..."):
            result = jobs.run_direct_benchmark(
                settings,
                Invoker(region=settings.region, pool_size=settings.iterations, timeout=settings.http_timeout),
                BenchmarkStore(settings.require_table(), region=settings.region),
            )
    except ConfigError as e:
        fail(str(e))

    print_job_result(result)
    if result.failed:
        raise SystemExit(1)


@main.command("run-http")
@click.argument("rule")
@click.option("--iterations", "-n", type=int, default=None, help="Concurrent requests per target.")
@click.pass_obj
def run_http(settings: Settings, rule: str, iterations: int | None):
    """
    Call the HTTP targets of RULE and store provisional stats.

    RULE is a schedule rule name such as LambdaBenchmarkRuleA, or just the
    target set name (A).
    """
    if iterations:
        settings.iterations = iterations

    try:
        with console.status("[bold green]Calling HTTP targets..."):
            result = jobs.run_http_benchmark(
                settings,
                rule,
                Invoker(region=settings.region, pool_size=settings.iterations, timeout=settings.http_timeout),
                BenchmarkStore(settings.require_table(), region=settings.region),
            )
    except ConfigError as e:
        fail(str(e))

    print_job_result(result)
    console.print("[dim]Cold start figures follow once the reconcile job has run.[/dim]")
    if result.failed:
        raise SystemExit(1)


@main.command()
@click.option("--runtime", "runtimes", multiple=True, help="Runtime partition to scan. Default: COLDBENCH_RUNTIMES")
@click.option("--delay", type=int, default=None, help="Minutes to wait after the last call. Default: 10")
@click.pass_obj
def reconcile(settings: Settings, runtimes: tuple[str, ...], delay: int | None):
    """Match pending HTTP results to their REPORT lines."""
    if runtimes:
        settings.runtimes = list(runtimes)
    if delay is not None:
        settings.reconcile_delay_minutes = delay

    try:
        with console.status("[bold green]Fetching CloudWatch logs..."):
            outcome = jobs.run_reconciliation(
                settings,
                BenchmarkStore(settings.require_table(), region=settings.region),
                CloudWatchLogs(region=settings.region, max_pages=settings.log_max_pages),
            )
    except (ConfigError, StoreError) as e:
        fail(str(e))

    print_reconciliation(outcome)


@main.command("fetch-init")
@click.argument("log_group")
@click.argument("log_stream")
@click.argument("request_id")
@click.pass_obj
def fetch_init(settings: Settings, log_group: str, log_stream: str, request_id: str):
    """Look up the init duration of a single request."""
    try:
        init = CloudWatchLogs(region=settings.region).fetch_init(log_group, log_stream, request_id)
    except CloudWatchError as e:
        fail(str(e))

    if init:
        console.print(f"Init duration: [bold]{format_duration(init)}[/bold]")
    else:
        console.print("[yellow]Warm start, or no REPORT line yet.[/yellow]")


@main.command()
@click.argument("log_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def parse(log_file: Path):
    """Summarize the REPORT lines of a saved log file."""
    reports = []
    with log_file.open() as f:
        for line in f:
            report = parse_report_line(line)
            if report:
                reports.append(report)

    if not reports:
        console.print("[yellow]No REPORT lines found.[/yellow]")
        return

    console.print(f"[green]Parsed {len(reports)} REPORT lines[/green]")
    print_summary_table(
        log_file.name,
        summarize_durations([r.duration_ms for r in reports]),
        summarize_cold_starts([r.init_duration_ms for r in reports]),
    )


@main.command("list")
@click.argument("runtime")
@click.option("--limit", default=25, help="Number of results to show. Default: 25")
@click.option(
    "--export",
    "export_format",
    type=click.Choice(["csv"]),
    default=None,
    help="Export format (csv).",
)
@click.option("--output", "-o", default=None, help="Output file path for export.")
@click.pass_obj
def list_results(settings: Settings, runtime: str, limit: int, export_format: str | None, output: str | None):
    """
    Show the newest stored results for RUNTIME.

    Examples:

        coldbench list nodejs14.x --limit 10

        coldbench list nodejs14.x --export csv -o results.csv
    """
    if export_format and not output:
        raise click.BadParameter("--output is required when using --export")

    try:
        entries = jobs.list_benchmarks(BenchmarkStore(settings.require_table(), region=settings.region), runtime, limit)
    except (ConfigError, StoreError) as e:
        fail(str(e))

    if not entries:
        console.print(f"[yellow]No results stored for {runtime}.[/yellow]")
        return

    print_entries(runtime, entries)

    if export_format == "csv" and output:
        export_to_csv(entries, output)
        console.print(f"\n[green]Exported to {output}[/green]")


if __name__ == "__main__":
    main()
