#!/usr/bin/env python3
"""News-impact ingestion worker.

Runs one pipeline cycle (or scheduled) for every watched ticker:
- fetch news since the watermark
- dedupe by canonical URL, render + extract article text
- classify market impact with the LLM and store each article's result once

INGEST_MODE=once (default) runs a single locked run and prints the summary;
INGEST_MODE=scheduled starts the cron scheduler and blocks until SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal

from dotenv import load_dotenv

from newsimpact.errors import PipelineAlreadyRunningError
from newsimpact.pipeline.config import PipelineConfig
from newsimpact.pipeline.runner import build_pipeline, run_pipeline_once, run_pipeline_with_lock
from newsimpact.pipeline.scheduler import PipelineScheduler
from newsimpact.pipeline.telemetry import configure_logging
from newsimpact.storage.postgres_schema import ensure_postgres_schema

logger = logging.getLogger("news_impact_worker")


def run_once(config: PipelineConfig) -> int:
    try:
        summary = asyncio.run(run_pipeline_once(config))
    except PipelineAlreadyRunningError:
        logger.warning("A pipeline run is already in progress")
        return 2
    except Exception as e:
        logger.error(f"Pipeline run failed: {e}", exc_info=True)
        return 1
    print(json.dumps(summary.as_dict()))
    return 0


async def run_scheduled(config: PipelineConfig) -> None:
    pipeline = build_pipeline(config)
    scheduler = PipelineScheduler(
        config.cron_schedule,
        lambda: run_pipeline_with_lock(pipeline.run),
        enabled=config.cron_enabled,
    )
    if not scheduler.start():
        return
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    try:
        await stop.wait()
    finally:
        logger.info("Shutdown requested")
        scheduler.stop()


def main() -> int:
    # Logging first so config validation output is captured.
    load_dotenv()
    configure_logging(os.environ.get("PIPELINE_LOG_DIR") or "logs")
    try:
        config = PipelineConfig.from_env()
    except ValueError as e:
        logger.error(str(e))
        return 1
    ensure_postgres_schema(config.pg_dsn)

    mode = (os.environ.get("INGEST_MODE") or "once").lower().strip()
    if mode in ("scheduled", "daemon"):
        asyncio.run(run_scheduled(config))
        return 0
    return run_once(config)


if __name__ == "__main__":
    raise SystemExit(main())
