#!/usr/bin/env python3
"""Non-interactive CLI that scans one or more storefronts with Rich output."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table
from rich.text import Text

from core.cancellation import ScanControl
from core.orchestrator import ScanOrchestrator
from core.types import FailureReason, ProgressEvent, ScanFailure, ScanOutcome, ScanResult
from utils.config_loader import ScannerSettings, get_settings, load_probe_dictionaries
from utils.error_handling import ConfigurationError
from utils.logger import colored_print, setup_logger
from utils.serialization import json_dumps

RESULTS_START_MARKER = "---SCANNER_RESULTS_START---"
RESULTS_END_MARKER = "---SCANNER_RESULTS_END---"
RESUME_AFTER_SECONDS = 3.0

console = Console()
error_console = Console(stderr=True)


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Scan storefronts for free and lowest-priced variants")
    parser.add_argument("targets", nargs="*", help="Domains or URLs to scan")
    parser.add_argument(
        "--domains-file",
        type=Path,
        help="Text file with one domain per line (blank lines and # comments ignored)",
    )
    parser.add_argument("--output-dir", type=Path, help="Directory for reports and checkpoints")
    parser.add_argument("--probes-file", type=Path, help="JSON file overriding the probe dictionaries")
    parser.add_argument("--max-concurrent", type=int, help="Global in-flight request ceiling")
    parser.add_argument("--proxy", help="Proxy URL for all requests")
    parser.add_argument("--resume", action="store_true", help="Resume from an existing checkpoint")
    parser.add_argument("--no-sitemap", action="store_true", help="Skip sitemap parsing")
    parser.add_argument("--no-search", action="store_true", help="Skip search exploitation")
    parser.add_argument("--no-cart", action="store_true", help="Skip cart endpoint scraping")
    parser.add_argument("--no-tracking", action="store_true", help="Do not update the domain tracking CSVs")
    parser.add_argument("--excel", action="store_true", help="Also write an .xlsx export")
    parser.add_argument("--json-only", action="store_true", help="Only print the JSON result block")
    parser.add_argument("--json-log", type=Path, help="Also write JSON-lines logs to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log to the console as well")
    return parser.parse_args(argv)


def _read_targets(args: argparse.Namespace) -> List[str]:
    targets = list(args.targets)
    if args.domains_file:
        for line in args.domains_file.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                targets.append(line)
    return targets


def _build_settings(args: argparse.Namespace) -> ScannerSettings:
    overrides = {}
    if args.output_dir:
        overrides["output_dir"] = args.output_dir
    if args.probes_file:
        overrides["probes_file"] = args.probes_file
    if args.max_concurrent:
        overrides["max_concurrent"] = args.max_concurrent
    if args.proxy:
        overrides["proxy_url"] = args.proxy
    if args.resume:
        overrides["resume_from_checkpoint"] = True
    if args.no_sitemap:
        overrides["enable_sitemap_parsing"] = False
    if args.no_search:
        overrides["enable_search_exploitation"] = False
    if args.no_cart:
        overrides["enable_cart_scraping"] = False
    if args.no_tracking:
        overrides["enable_site_tracking"] = False
    if args.excel:
        overrides["enable_excel_export"] = True
    if args.json_log:
        overrides["structured_log_file"] = args.json_log
    return get_settings().model_copy(update=overrides)


def _install_interrupt_handler(loop: asyncio.AbstractEventLoop, control: ScanControl) -> None:
    """First Ctrl+C pauses (auto-resume after a few seconds); Ctrl+C while paused stops."""

    def _on_interrupt() -> None:
        if control.paused or control.stopped:
            colored_print("WARNING", "Stopping scan, saving partial results...")
            control.stop()
            return
        colored_print("WARNING", f"Scan paused, resuming in {RESUME_AFTER_SECONDS:.0f}s (Ctrl+C again to stop)")
        control.pause()
        loop.call_later(RESUME_AFTER_SECONDS, control.resume)

    try:
        loop.add_signal_handler(signal.SIGINT, _on_interrupt)
    except (NotImplementedError, RuntimeError) as exc:
        logging.getLogger(__name__).debug("Interrupt handler not installed: %s", exc)


def _items_table(title: str, result: ScanResult, free: bool) -> Optional[Table]:
    items = result.free_items if free else result.lowest_priced_items
    if not items:
        return None
    table = Table(title=title, box=box.SIMPLE_HEAD, highlight=True)
    table.add_column("#", justify="right", no_wrap=True)
    table.add_column("Title")
    table.add_column("Variant")
    table.add_column("Price", justify="right")
    table.add_column("Available", justify="center")
    table.add_column("Source")
    for index, item in enumerate(items, start=1):
        table.add_row(
            str(index),
            item.title,
            item.variant,
            f"${item.price:.2f}",
            Text("Yes", style="green") if item.available else Text("No", style="red"),
            item.source,
        )
    return table


def _render_outcome(outcome: ScanOutcome) -> None:
    if isinstance(outcome, ScanFailure):
        style = "yellow" if outcome.reason is FailureReason.STOPPED else "bold red"
        error_console.print(f"[{style}]{outcome.target}[/]: {outcome.error}")
        return

    summary = Table(title=f"Scan Summary: {outcome.domain}", box=box.ROUNDED)
    summary.add_column("Metric", no_wrap=True)
    summary.add_column("Value")
    stats = outcome.stats
    summary.add_row("Working URL", outcome.scanned_url)
    summary.add_row("Products", str(stats.get("products_found", 0)))
    summary.add_row("Variants", str(stats.get("variants_processed", 0)))
    summary.add_row("Collections", str(stats.get("collections_found", 0)))
    summary.add_row("Requests", str(stats.get("total_requests", 0)))
    summary.add_row(
        "Free items",
        Text(str(outcome.free_items_found), style="bold green" if outcome.free_items_found else "dim"),
    )
    summary.add_row("Duration", f"{outcome.duration_seconds:.1f}s")
    if outcome.stopped_early:
        summary.add_row("Status", Text("stopped early", style="yellow"))
    if outcome.output_file:
        summary.add_row("Report", outcome.output_file)
    if outcome.csv_file:
        summary.add_row("CSV", outcome.csv_file)
    console.print(summary)

    for table in (
        _items_table("Lowest Priced Items", outcome, free=False),
        _items_table("Free Items", outcome, free=True),
    ):
        if table is not None:
            console.print(table)


async def _run(targets: List[str], settings: ScannerSettings, show_progress: bool) -> List[ScanOutcome]:
    probes = load_probe_dictionaries(settings.probes_file)
    control = ScanControl()
    _install_interrupt_handler(asyncio.get_running_loop(), control)

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
        disable=not show_progress,
        transient=True,
    )
    task_id = progress.add_task("starting", total=None)

    def on_progress(event: ProgressEvent) -> None:
        progress.update(
            task_id,
            description=event.message or event.phase,
            completed=event.current,
            total=event.total or None,
        )

    orchestrator = ScanOrchestrator(
        settings, probes=probes, control=control, progress_callback=on_progress
    )
    with progress:
        if len(targets) == 1:
            return [await orchestrator.scan(targets[0])]
        return await orchestrator.scan_many(targets)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    targets = _read_targets(args)
    if not targets:
        error_console.print("[red]No targets given[/]")
        return 2

    try:
        settings = _build_settings(args)
    except ValueError as exc:
        error_console.print(f"[red]Invalid settings:[/] {exc}")
        return 2

    setup_logger(
        name="",
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        log_file=str(settings.log_file) if settings.log_file else None,
        console=args.verbose,
        structured_file=str(settings.structured_log_file) if settings.structured_log_file else None,
    )

    try:
        outcomes = asyncio.run(_run(targets, settings, show_progress=not args.json_only))
    except ConfigurationError as exc:
        error_console.print(f"[red]Configuration error:[/] {exc}")
        return 2

    if not args.json_only:
        for outcome in outcomes:
            _render_outcome(outcome)

    payload = [outcome.to_dict() for outcome in outcomes]
    print(RESULTS_START_MARKER)
    print(json_dumps(payload[0] if len(payload) == 1 else payload, indent=2))
    print(RESULTS_END_MARKER)

    return _exit_code(outcomes)


def _exit_code(outcomes: Sequence[ScanOutcome]) -> int:
    failures = [outcome for outcome in outcomes if isinstance(outcome, ScanFailure)]
    if any(failure.reason is not FailureReason.STOPPED for failure in failures):
        return 1
    # Interrupted before any storefront answered
    return 130 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
