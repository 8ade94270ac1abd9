"""Single-flight run lock, the manual trigger, and production wiring."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from newsimpact.errors import PipelineAlreadyRunningError
from newsimpact.extraction.fulltext import ArticleExtractor, PlaywrightRenderer
from newsimpact.ingestion.article_types import RunSummary
from newsimpact.ingestion.ingestors import MassiveNewsProvider
from newsimpact.pipeline.config import PipelineConfig
from newsimpact.pipeline.service import NewsImpactPipeline
from newsimpact.scoring.impact_classifier import ImpactClassifier
from newsimpact.storage.pipeline_state import PostgresWatermarkStore
from newsimpact.storage.postgres_repo import PostgresRawNewsStore, PostgresWatchlistStore
from newsimpact.storage.postgres_results import PostgresImpactResultStore

logger = logging.getLogger(__name__)


class RunLock:
    """In-process boolean guard; a second request while held is rejected, not queued.

    Check-and-set happens without an await in between, so it is atomic on one
    event loop. Not shared across processes or hosts.
    """

    def __init__(self) -> None:
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def try_acquire(self) -> bool:
        if self._held:
            return False
        self._held = True
        return True

    def release(self) -> None:
        self._held = False


_RUN_LOCK = RunLock()


def is_pipeline_running(lock: Optional[RunLock] = None) -> bool:
    return (lock or _RUN_LOCK).held


async def run_pipeline_with_lock(
    run: Callable[[], Awaitable[RunSummary]],
    *,
    lock: Optional[RunLock] = None,
) -> RunSummary:
    """Run ``run`` unless a run is in flight; raise PipelineAlreadyRunningError otherwise."""
    lock = lock or _RUN_LOCK
    if not lock.try_acquire():
        raise PipelineAlreadyRunningError()
    try:
        return await run()
    finally:
        lock.release()


def build_pipeline(config: PipelineConfig) -> NewsImpactPipeline:
    """Wire the Postgres stores, Massive provider, Playwright renderer and OpenAI classifier."""
    if not config.massive_api_key:
        raise ValueError("MASSIVE_API_KEY is required for news ingestion")

    def _extractor() -> ArticleExtractor:
        renderer = PlaywrightRenderer(timeout_ms=config.extract_timeout_ms)
        return ArticleExtractor(
            renderer,
            timeout_ms=config.extract_timeout_ms,
            min_word_count=config.min_word_count,
        )

    def _classifier() -> ImpactClassifier:
        return ImpactClassifier(
            model=config.ai_model,
            max_chars=config.ai_max_chars,
            retry_policy=config.retry_policy,
            api_key=config.openai_api_key,
        )

    return NewsImpactPipeline(
        config,
        watchlist=PostgresWatchlistStore(config.pg_dsn),
        news_provider=MassiveNewsProvider(api_key=config.massive_api_key, base_url=config.massive_base_url),
        watermark=PostgresWatermarkStore(config.pg_dsn, lookback_hours=config.initial_lookback_hours),
        raw_store=PostgresRawNewsStore(config.pg_dsn),
        result_store=PostgresImpactResultStore(config.pg_dsn),
        extractor_factory=_extractor,
        classifier_factory=_classifier,
    )


async def run_pipeline_once(config: PipelineConfig, *, lock: Optional[RunLock] = None) -> RunSummary:
    """Manual trigger: one locked run with production wiring."""
    pipeline = build_pipeline(config)
    return await run_pipeline_with_lock(pipeline.run, lock=lock)
