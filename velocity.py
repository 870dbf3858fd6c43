#!/usr/bin/env python3
"""
Velocity -- multi-stream HTTP speed testing from the terminal.

Usage::

    python velocity.py                       # rich dashboard, default endpoint
    python velocity.py --simple              # plain text
    python velocity.py --json                # JSON to stdout
    python velocity.py --duration 5 --connections 8
    python velocity.py --repeat 5 --interval 60
    python velocity.py --monitor 30          # idle health probes for 30 s
    python velocity.py --connections 8 --save  # store options as defaults
    python velocity.py --download-url URL --upload-url URL --trace-url URL
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from typing import Any, Dict, Optional

from engine.config import TestConfig, config_from_dict, load_config, save_config
from engine.constants import DEFAULT_ENDPOINT
from engine.errors import ConfigError, TestAborted
from engine.models import Direction, ServerEndpoint
from engine.monitor import LiveHealthMonitor
from engine.phases import PhaseStateMachine
from ui.dashboard import (
    ProgressDisplay,
    console,
    print_endpoint,
    print_final_results,
    print_header,
    print_health,
    print_rate_history,
)
from ui.logging_setup import configure_logging
from ui.output import create_result_json, format_text_result

logger = logging.getLogger("velocity")


# ---------------------------------------------------------------------------
# Parameter resolution
# ---------------------------------------------------------------------------

def build_config(args: argparse.Namespace, file_config: Dict[str, Any]) -> TestConfig:
    """Merge the config file with command-line flags (flags win) and validate."""
    merged = dict(file_config)

    def _seconds(value: Optional[float]) -> Optional[int]:
        return None if value is None else int(round(value * 1000))

    overrides = {
        "duration_ms": _seconds(args.duration),
        "warmup_ms": _seconds(args.warmup),
        "stream_count": args.connections,
        "upload_stream_count": args.upload_connections,
        "probe_count": args.ping_count,
        "percentile": args.percentile,
    }
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return config_from_dict(merged)


def build_endpoint(args: argparse.Namespace, file_config: Dict[str, Any]) -> ServerEndpoint:
    """Endpoint from explicit URLs, else the config file, else the default."""
    urls = (args.download_url, args.upload_url, args.trace_url)
    if any(urls):
        if not all(urls):
            raise ConfigError("--download-url, --upload-url and --trace-url go together")
        return ServerEndpoint(
            id="custom",
            name=args.name or "Custom endpoint",
            download_url=args.download_url,
            upload_url=args.upload_url,
            trace_url=args.trace_url,
        )

    stored = file_config.get("endpoint")
    if isinstance(stored, dict):
        endpoint = ServerEndpoint.from_dict(stored)
        if endpoint.download_url and endpoint.upload_url and endpoint.trace_url:
            return endpoint
        logger.warning("Ignoring incomplete endpoint in config file")

    return ServerEndpoint.from_dict(DEFAULT_ENDPOINT)


# ---------------------------------------------------------------------------
# Core test runner
# ---------------------------------------------------------------------------

async def run_speedtest(
    endpoint: ServerEndpoint,
    config: TestConfig,
    *,
    json_output: bool = False,
    simple: bool = False,
) -> Optional[dict]:
    """Execute one full run and return a JSON-serialisable dict."""
    show_ui = not json_output and not simple

    machine = PhaseStateMachine(endpoint, config)

    if show_ui:
        print_endpoint(endpoint)
        progress = ProgressDisplay()
        machine.subscribe(progress.handle)

    try:
        result = await machine.run()
    finally:
        if show_ui:
            progress.stop()

    if result is None:
        return None

    download_history = [s.rate_mbps for s in machine.rate_history[Direction.DOWNLOAD]]
    upload_history = [s.rate_mbps for s in machine.rate_history[Direction.UPLOAD]]

    if show_ui:
        print_rate_history("Download Over Time", download_history, "green")
        print_rate_history("Upload Over Time", upload_history, "blue")
        print_final_results(result, endpoint.name)
    elif simple:
        print(format_text_result(result, endpoint.name))

    result_json = create_result_json(
        result,
        endpoint,
        config=config,
        download_history=download_history,
        upload_history=upload_history,
    )
    if json_output:
        print(json.dumps(result_json, indent=2))

    return result_json


async def watch_health(endpoint: ServerEndpoint, config: TestConfig, seconds: float) -> None:
    """Run the idle health monitor for *seconds* and print each reading."""
    machine = PhaseStateMachine(endpoint, config)
    monitor = LiveHealthMonitor(machine)
    machine.attach_monitor(monitor)
    monitor.subscribe(print_health)

    console.print(
        f"[bold]Monitoring {endpoint.name}[/bold] "
        f"[dim]every {config.monitor_interval_ms / 1000:.0f}s for {seconds:.0f}s[/dim]"
    )
    monitor.start()
    try:
        await asyncio.sleep(seconds)
    finally:
        await monitor.stop()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Velocity -- multi-stream HTTP speed test",
    )
    # Output modes
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    parser.add_argument("--simple", "-s", action="store_true", help="Simple output mode (no dashboard)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log engine activity")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only log errors")

    # Endpoint
    parser.add_argument("--download-url", metavar="URL", help="Download source URL")
    parser.add_argument("--upload-url", metavar="URL", help="Upload sink URL")
    parser.add_argument("--trace-url", metavar="URL", help="Latency trace URL")
    parser.add_argument("--name", metavar="NAME", help="Display name for a custom endpoint")

    # Test parameters (defaults come from the config file)
    parser.add_argument("--duration", type=float, metavar="SECS", help="Length of each throughput phase (default: 8)")
    parser.add_argument("--warmup", type=float, metavar="SECS", help="Warm-up window excluded from results (default: 1.2)")
    parser.add_argument("--connections", type=int, metavar="N", help="Concurrent download streams (default: 4)")
    parser.add_argument("--upload-connections", type=int, metavar="N", help="Concurrent upload streams (default: same as --connections)")
    parser.add_argument("--ping-count", type=int, metavar="N", help="Number of latency probes (default: 6)")
    parser.add_argument("--percentile", type=float, metavar="P", help="Sample percentile reported as the result (default: 0.8)")

    # Repeat / monitor modes
    parser.add_argument("--repeat", type=int, default=1, metavar="N", help="Run the test N times (default: 1)")
    parser.add_argument("--interval", type=float, default=60.0, metavar="SECS", help="Seconds between repeated tests (default: 60)")
    parser.add_argument("--monitor", type=float, metavar="SECS", help="Only run the idle health monitor for SECS")
    parser.add_argument("--save", action="store_true", help="Store the given options as defaults and exit")
    return parser


def main(argv: Optional[list] = None) -> None:
    args = _parser().parse_args(argv)

    if args.verbose:
        configure_logging("DEBUG")
    elif args.quiet:
        configure_logging("ERROR")
    else:
        configure_logging("WARNING")

    try:
        file_config = load_config()
        config = build_config(args, file_config)
        endpoint = build_endpoint(args, file_config)
    except ConfigError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    if args.save:
        stored = {**file_config, **config.to_dict(), "endpoint": endpoint.to_dict()}
        path = save_config(stored)
        console.print(f"[green]Saved defaults to {path}[/green]")
        return

    if args.repeat < 1:
        console.print("[red]Error: --repeat must be >= 1[/red]")
        sys.exit(1)

    try:
        if args.monitor:
            asyncio.run(watch_health(endpoint, config, args.monitor))
            return

        if not args.json and not args.simple:
            print_header()

        for run_idx in range(args.repeat):
            if args.repeat > 1 and not args.json:
                console.print(f"\n[bold cyan]--- Run {run_idx + 1}/{args.repeat} ---[/bold cyan]")

            asyncio.run(
                run_speedtest(endpoint, config, json_output=args.json, simple=args.simple)
            )

            # Wait between runs (but not after the last one)
            if run_idx < args.repeat - 1:
                if not args.json:
                    console.print(f"[dim]Next run in {args.interval:.0f}s...[/dim]")
                time.sleep(args.interval)

    except KeyboardInterrupt:
        console.print("\n[yellow]Test cancelled by user[/yellow]")
        sys.exit(1)
    except TestAborted as exc:
        console.print(f"\n[red]Error: {exc}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
