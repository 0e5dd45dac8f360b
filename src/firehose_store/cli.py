from __future__ import annotations

import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Optional

import typer
from loguru import logger
from prometheus_client import start_http_server

from .config import IngestSettings, get_settings
from .log import Diagnostics, setup_logging
from .mapping import STATUS_MAPPER
from .pipeline import (
    Aggregator,
    BatchInserter,
    ErrorSink,
    ErrorTable,
    ProgressBus,
    RetryPolicy,
    Sink,
    StreamSupervisor,
    Windower,
)
from .sources import ndjson_source
from .storage import (
    NdjsonErrorTable,
    NdjsonInsertAllClient,
    PostgresErrorTable,
    PostgresInsertAllClient,
    open_pool,
)

app = typer.Typer(help="Firehose ingestion into an analytical store")


def retry_policy_from(settings: IngestSettings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        initial_backoff_ms=settings.retry_initial_backoff_ms,
        max_backoff_ms=settings.retry_max_backoff_ms,
        backoff_multiplier=settings.retry_backoff_multiplier,
        jitter=settings.retry_jitter,
    )


def build_aggregator(
    settings: IngestSettings,
    sink: Sink,
    error_table: ErrorTable,
    sample_path: str,
    user_path: str,
    *,
    mapper=STATUS_MAPPER,
) -> Aggregator:
    """Wire the ``sample`` and ``user`` streams into one Aggregator."""
    stop = asyncio.Event()
    bus = ProgressBus()
    retry = retry_policy_from(settings)

    def supervisor(name: str, path: str, table: str) -> StreamSupervisor:
        return StreamSupervisor(
            name,
            lambda: ndjson_source(path),
            Windower(
                settings.window_max_count,
                settings.window_max_seconds,
                flush_on_end=settings.flush_on_end,
            ),
            BatchInserter(sink, table, mapper=mapper, stop_event=stop),
            ErrorSink(error_table, stream=name, diagnostics=Diagnostics(name)),
            retry,
            bus=bus,
            restart_delay=settings.restart_delay_sec,
            stop_event=stop,
        )

    return Aggregator(
        supervisor("sample", sample_path, settings.sample_table),
        supervisor("user", user_path, settings.user_table),
        sample_interval=settings.report_interval_sec,
        stop_policy=settings.stop_policy,
    )


async def _run(settings: IngestSettings, sample: str, user: str, out_dir: Path) -> None:
    pool = None
    if settings.dsn:
        pool = open_pool(settings.dsn, settings.pool_max, app_name="firehose-store")
        await pool.open()
        sink: Sink = PostgresInsertAllClient(pool, settings.schema_name)
        error_table: ErrorTable = PostgresErrorTable(
            pool, settings.schema_name, settings.error_table
        )
        logger.info(f"Writing to PostgreSQL schema '{settings.schema_name}'")
    else:
        sink = NdjsonInsertAllClient(out_dir)
        error_table = NdjsonErrorTable(settings.error_ndjson_path)
        logger.info(f"No DSN configured; writing NDJSON under {out_dir}")

    agg = build_aggregator(settings, sink, error_table, sample, user)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, agg.stop)
        except NotImplementedError:  # Windows
            pass

    try:
        joint = await agg.run()
        logger.success(f"Ingestion finished: {joint}")
    finally:
        if pool is not None:
            await pool.close()


@app.command()
def run(
    sample: str = typer.Option(..., "--sample", help="NDJSON file for the sample stream ('-' = stdin)"),
    user: str = typer.Option(..., "--user", help="NDJSON file for the user stream"),
    out_dir: Path = typer.Option(Path("out"), "--out", help="Output directory when no DSN is set"),
    max_count: Optional[int] = typer.Option(None, "--max-count", help="Items per batch"),
    max_window: Optional[float] = typer.Option(None, "--max-window", help="Seconds per window"),
    report_interval: Optional[float] = typer.Option(None, "--report-interval"),
):
    """Ingest the sample and user streams until both end (or Ctrl-C)."""
    for option, path in (("--sample", sample), ("--user", user)):
        if path != "-" and not Path(path).is_file():
            raise typer.BadParameter(f"{option}: no such file: {path}")

    overrides = {
        k: v
        for k, v in {
            "window_max_count": max_count,
            "window_max_seconds": max_window,
            "report_interval_sec": report_interval,
        }.items()
        if v is not None
    }
    settings = get_settings().model_copy(update=overrides)
    setup_logging(settings.log_level, settings.log_json)

    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info(f"Prometheus metrics on :{settings.metrics_port}/metrics")

    try:
        asyncio.run(_run(settings, sample, user, out_dir))
    except MemoryError:
        logger.critical("Stopped on unrecoverable resource exhaustion")
        sys.exit(2)


@app.command("show-errors")
def show_errors(
    path: Optional[str] = typer.Option(None, "--path", help="Error NDJSON file"),
    limit: int = typer.Option(20, "--limit"),
):
    """Print recorded error rows from the NDJSON error table."""
    table = NdjsonErrorTable(path or get_settings().error_ndjson_path, mkdirs=False)
    for rec in asyncio.run(table.replay(limit)):
        typer.echo(json.dumps(rec.model_dump(mode="json")))


if __name__ == "__main__":
    app()
