"""
Command-line entry points.

Usage:
    console-serve --port 8080 --host 127.0.0.1
    console-run ingestion
    console-run backfill --months 12
    console-run backfill --attach
"""

import argparse
import asyncio
import sys
from typing import Optional, Sequence

import httpx
import uvicorn

from .client import ConsoleClient, JobConsole, JobView
from .errors import TransportError
from .jobs import JobType
from .telemetry import configure_logging


def build_serve_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="console-serve",
        description="Launch the ingestion job console API server",
    )
    parser.add_argument("--host", type=str, default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload for development")
    parser.add_argument(
        "--log-level",
        type=str,
        default="info",
        choices=["critical", "error", "warning", "info", "debug"],
        help="uvicorn log level (application logs follow INGEST_CONSOLE_LOG_LEVEL)",
    )
    return parser


def serve(argv: Optional[Sequence[str]] = None) -> int:
    """Run the API under uvicorn."""
    args = build_serve_parser().parse_args(argv)

    print(f"Starting job console API on {args.host}:{args.port}")
    print(f"API documentation available at: http://localhost:{args.port}/docs")

    uvicorn.run(
        "ingest_console.api.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )
    return 0


def print_update(view: JobView):
    """Single status line, refreshed on every tick."""
    last_line = view.output.strip().splitlines()[-1] if view.output.strip() else ""
    print(f"\r[{view.phase.value:9s}] {view.job_type.value} | {last_line[:100]}", end="", flush=True)


def print_result(view: JobView, result):
    print()
    summary = result.summary
    fetched = summary.fetched if summary.fetched is not None else "unknown"
    marker = {"succeeded": "OK", "failed": "FAILED"}.get(result.outcome.value, "UNCONFIRMED")
    print(f"\n[{marker}] {result.message}")
    print(f"   Added: {summary.added}")
    print(f"   Modified: {summary.modified}")
    print(f"   Fetched: {fetched}")
    print(f"   Errors: {summary.errors}")
    if not result.success and result.raw_tail:
        print("\n--- last output ---")
        print(result.raw_tail[-1000:])


def print_error(view: JobView, error: Exception):
    print(f"\n[warn] status check failed ({view.consecutive_errors}): {error}")


async def run_job(
    job_type: str,
    months: Optional[int] = None,
    attach: bool = False,
    base_url: str = "http://localhost:8000",
    interval: float = 5.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> int:
    """
    Launch (or attach to) a job and follow it until idle.

    Returns:
        Process exit code: 0 if the job succeeded, 1 otherwise
    """
    async with ConsoleClient(base_url, transport=transport) as client:
        console = JobConsole(
            client,
            interval=interval,
            on_update=print_update,
            on_result=print_result,
            on_error=print_error,
        )
        try:
            if attach:
                print(f"Attaching to {job_type}...")
                task = console.attach(job_type)
            else:
                print(f"Launching {job_type}...")
                outcome, task = await console.launch_and_watch(job_type, months=months)
                if outcome.accepted:
                    print(f"Started run {outcome.run_id} at {outcome.started_at}")
                print(console.poller.views[outcome.job_type].banner)

            view = await task
        except (TransportError, ValueError) as e:
            print(f"\nFailed: {e}")
            return 1
        finally:
            await console.aclose()

    if view.lost:
        print(f"\n{view.banner}")
        return 1
    return 0 if view.result is not None and view.result.success else 1


def build_run_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="console-run",
        description="Launch an ingestion job and follow its progress",
    )
    parser.add_argument("job_type", choices=[jt.value for jt in JobType], help="Job to run")
    parser.add_argument(
        "--months",
        type=int,
        default=None,
        help="Backfill only: months of history to load (1-120, default 6)",
    )
    parser.add_argument(
        "--attach",
        action="store_true",
        help="Follow an already running job instead of launching one",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=5.0,
        help="Seconds between status checks (default: 5)",
    )
    parser.add_argument(
        "--url",
        type=str,
        default="http://localhost:8000",
        help="API base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        help="Log level for client diagnostics (default: WARNING)",
    )
    return parser


def run(argv: Optional[Sequence[str]] = None) -> int:
    """Launch or attach, then tail the job until it finishes."""
    parser = build_run_parser()
    args = parser.parse_args(argv)

    if args.months is not None and args.job_type != JobType.BACKFILL.value:
        parser.error("--months only applies to backfill")
    if args.months is not None and args.attach:
        parser.error("--months cannot be combined with --attach")

    configure_logging(args.log_level, json_output=False)

    return asyncio.run(
        run_job(
            job_type=args.job_type,
            months=args.months,
            attach=args.attach,
            base_url=args.url,
            interval=args.interval,
        )
    )


def serve_main():
    sys.exit(serve())


def run_main():
    sys.exit(run())
