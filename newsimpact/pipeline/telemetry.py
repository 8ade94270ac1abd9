"""Logging setup and per-item pipeline events.

Every item emits one JSON line per stage it passes through:
``{runId, url, url_hash, stage, status, duration_ms, error?}``.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Any, Dict, Optional

EVENT_LOGGER_NAME = "newsimpact.pipeline.events"

event_logger = logging.getLogger(EVENT_LOGGER_NAME)


def configure_logging(log_dir: str = "logs", *, level: int = logging.INFO) -> None:
    """Root logging to stdout + ``<log_dir>/newsimpact.log``; events to ``pipeline.log``."""
    os.makedirs(log_dir, exist_ok=True)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.FileHandler(os.path.join(log_dir, "newsimpact.log")),
            logging.StreamHandler(sys.stdout),
        ],
    )
    # Events are already JSON; keep them out of the human-readable root format.
    if not event_logger.handlers:
        fmt = logging.Formatter("%(message)s")
        for handler in (logging.FileHandler(os.path.join(log_dir, "pipeline.log")), logging.StreamHandler(sys.stdout)):
            handler.setFormatter(fmt)
            event_logger.addHandler(handler)
        event_logger.setLevel(logging.INFO)
        event_logger.propagate = False


def elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def emit_event(payload: Dict[str, Any]) -> None:
    event_logger.info(json.dumps({k: v for k, v in payload.items() if v is not None}, default=str))


def log_item_event(
    *,
    run_id: str,
    stage: str,
    status: str,
    duration_ms: int,
    url: Optional[str] = None,
    url_hash: Optional[str] = None,
    error: Optional[str] = None,
    **extra: Any,
) -> None:
    emit_event(
        {
            "runId": run_id,
            "url": url,
            "url_hash": url_hash,
            "stage": stage,
            "status": status,
            "duration_ms": duration_ms,
            "error": error,
            **extra,
        }
    )
