"""News-impact pipeline orchestrator.

One run moves through:
FetchingTickers -> Ingesting -> Deduping -> Extracting -> Classifying -> Advancing -> Done

Per-item failures become summary counters plus a telemetry event and never
abort the run. Watermark-store faults propagate to the caller.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Sequence

from newsimpact.errors import TaskTimeoutError
from newsimpact.extraction.fulltext import ArticleExtractor
from newsimpact.ingestion.article_types import CanonicalItem, ExtractedItem, FetchedItem, RunSummary
from newsimpact.ingestion.ingestors import BaseNewsProvider, fetch_news_since
from newsimpact.ingestion.url_utils import canonical_identity
from newsimpact.pipeline.config import PipelineConfig
from newsimpact.pipeline.telemetry import elapsed_ms, emit_event, log_item_event
from newsimpact.scoring.impact_classifier import ImpactClassifier
from newsimpact.storage.postgres_repo import normalize_tickers

logger = logging.getLogger(__name__)


class RunStage(str, enum.Enum):
    IDLE = "idle"
    FETCHING_TICKERS = "fetching_tickers"
    INGESTING = "ingesting"
    DEDUPING = "deduping"
    EXTRACTING = "extracting"
    CLASSIFYING = "classifying"
    ADVANCING = "advancing"
    DONE = "done"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _err(e: BaseException) -> str:
    return str(e) or e.__class__.__name__


class NewsImpactPipeline:
    """Sequences the stages of one run over injected collaborators.

    Collaborators (duck-typed):
    - watchlist.distinct_tickers() -> list[str]
    - watermark.get(now=...) -> datetime / watermark.set(datetime)
    - raw_store.upsert_many(items)
    - result_store.existing_hashes(hashes) -> set[str]
    - result_store.insert_if_absent(item, fields, model=, prompt_version=) -> bool
      (writes the result and its news-view row atomically)
    - extractor_factory() -> ArticleExtractor, classifier_factory() -> ImpactClassifier
    """

    def __init__(
        self,
        config: PipelineConfig,
        *,
        watchlist: Any,
        news_provider: BaseNewsProvider,
        watermark: Any,
        raw_store: Any,
        result_store: Any,
        extractor_factory: Callable[[], ArticleExtractor],
        classifier_factory: Callable[[], ImpactClassifier],
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self.watchlist = watchlist
        self.news_provider = news_provider
        self.watermark = watermark
        self.raw_store = raw_store
        self.result_store = result_store
        self.extractor_factory = extractor_factory
        self.classifier_factory = classifier_factory
        self.clock = clock
        self.sleep = sleep
        self.stage = RunStage.IDLE

    def _enter(self, stage: RunStage, run_id: str) -> None:
        self.stage = stage
        logger.debug(f"run {run_id}: {stage.value}")

    async def run(self) -> RunSummary:
        run_id = str(uuid.uuid4())
        run_started_at = self.clock()
        started = time.monotonic()
        summary = RunSummary(run_id=run_id)

        try:
            self._enter(RunStage.FETCHING_TICKERS, run_id)
            tickers = normalize_tickers(await self.watchlist.distinct_tickers())
            if not tickers:
                self._enter(RunStage.ADVANCING, run_id)
                await self.watermark.set(run_started_at)
                summary.skip_reason = "no_wishlisted_tickers"
                emit_event(
                    {
                        "runId": run_id,
                        "stage": "ingest",
                        "status": "skip",
                        "duration_ms": elapsed_ms(started),
                        "reason": summary.skip_reason,
                        "summary": summary.as_dict(),
                    }
                )
                self._enter(RunStage.DONE, run_id)
                return summary

            since = await self.watermark.get(now=run_started_at)

            self._enter(RunStage.INGESTING, run_id)
            canonical = await self._ingest(run_id, since, tickers, summary)

            self._enter(RunStage.DEDUPING, run_id)
            pending = await self._dedupe(run_id, canonical, summary)

            self._enter(RunStage.EXTRACTING, run_id)
            extracted = await self._extract_all(run_id, pending, summary)

            self._enter(RunStage.CLASSIFYING, run_id)
            await self._classify_all(run_id, extracted, summary)

            self._enter(RunStage.ADVANCING, run_id)
            await self.watermark.set(run_started_at)
        except BaseException:
            self.stage = RunStage.IDLE
            raise

        emit_event(
            {
                "runId": run_id,
                "stage": "store",
                "status": "ok",
                "duration_ms": elapsed_ms(started),
                "summary": summary.as_dict(),
            }
        )
        self._enter(RunStage.DONE, run_id)
        return summary

    async def _ingest(
        self, run_id: str, since: datetime, tickers: Sequence[str], summary: RunSummary
    ) -> List[CanonicalItem]:
        fetched = await fetch_news_since(
            self.news_provider,
            since,
            tickers,
            retry_policy=self.config.retry_policy,
            limit=self.config.news_limit,
            now=self.clock(),
            sleep=self.sleep,
        )
        for ticker, error in fetched.failed_tickers.items():
            log_item_event(run_id=run_id, stage="ingest", status="fail", duration_ms=0, ticker=ticker, error=error)

        summary.ingested = len(fetched.items)
        canonical: List[CanonicalItem] = []
        for item in fetched.items:
            t0 = time.monotonic()
            try:
                canonical.append(self._canonicalize(item))
            except ValueError as e:
                summary.failed += 1
                log_item_event(
                    run_id=run_id, url=item.url, stage="ingest", status="fail", duration_ms=elapsed_ms(t0), error=_err(e)
                )
                continue
            log_item_event(
                run_id=run_id,
                url=item.url,
                url_hash=canonical[-1].url_hash,
                stage="ingest",
                status="ok",
                duration_ms=elapsed_ms(t0),
            )
        return canonical

    @staticmethod
    def _canonicalize(item: FetchedItem) -> CanonicalItem:
        canon, uhash = canonical_identity(item.url)
        return CanonicalItem(
            url=item.url,
            headline=item.headline,
            published_at=item.published_at,
            source=item.source,
            tickers=item.tickers,
            canonical_url=canon,
            url_hash=uhash,
        )

    async def _dedupe(self, run_id: str, canonical: List[CanonicalItem], summary: RunSummary) -> List[CanonicalItem]:
        if canonical:
            t0 = time.monotonic()
            try:
                await self.raw_store.upsert_many(canonical)
            except Exception as e:
                # Observation log only; downstream stages do not read it.
                logger.error(f"Raw news upsert failed for {len(canonical)} items: {e}")
                emit_event(
                    {"runId": run_id, "stage": "ingest", "status": "fail", "duration_ms": elapsed_ms(t0), "error": _err(e)}
                )

        # Later sighting wins: it is the freshest fetch.
        unique: Dict[str, CanonicalItem] = {}
        for item in canonical:
            unique[item.url_hash] = item

        existing = await self.result_store.existing_hashes(list(unique))
        pending: List[CanonicalItem] = []
        for item in unique.values():
            if item.url_hash in existing:
                summary.already_done += 1
                log_item_event(
                    run_id=run_id, url=item.url, url_hash=item.url_hash, stage="ingest", status="skip", duration_ms=0
                )
                continue
            pending.append(item)
        return pending

    async def _extract_all(self, run_id: str, pending: List[CanonicalItem], summary: RunSummary) -> List[ExtractedItem]:
        if not pending:
            return []
        extractor = self.extractor_factory()
        semaphore = asyncio.Semaphore(self.config.extract_concurrency)
        extracted: List[ExtractedItem] = []

        async def _one(item: CanonicalItem) -> None:
            async with semaphore:
                t0 = time.monotonic()
                try:
                    result = await extractor.extract(item.url)
                except TaskTimeoutError as e:
                    summary.skipped_no_content += 1
                    log_item_event(
                        run_id=run_id,
                        url=item.url,
                        url_hash=item.url_hash,
                        stage="extract",
                        status="skip",
                        duration_ms=elapsed_ms(t0),
                        error=_err(e),
                    )
                    return
                except Exception as e:
                    summary.failed += 1
                    log_item_event(
                        run_id=run_id,
                        url=item.url,
                        url_hash=item.url_hash,
                        stage="extract",
                        status="fail",
                        duration_ms=elapsed_ms(t0),
                        error=_err(e),
                    )
                    return
                if result is None:
                    summary.skipped_no_content += 1
                    log_item_event(
                        run_id=run_id,
                        url=item.url,
                        url_hash=item.url_hash,
                        stage="extract",
                        status="skip",
                        duration_ms=elapsed_ms(t0),
                    )
                    return
                extracted.append(
                    ExtractedItem(
                        url=item.url,
                        headline=item.headline,
                        published_at=item.published_at,
                        source=item.source,
                        tickers=item.tickers,
                        canonical_url=item.canonical_url,
                        url_hash=item.url_hash,
                        content=result.content,
                        word_count=result.word_count,
                    )
                )
                summary.extracted_ok += 1
                log_item_event(
                    run_id=run_id,
                    url=item.url,
                    url_hash=item.url_hash,
                    stage="extract",
                    status="ok",
                    duration_ms=elapsed_ms(t0),
                )

        try:
            await asyncio.gather(*(_one(item) for item in pending))
        finally:
            try:
                await extractor.close()
            except Exception as e:
                logger.error(f"Error closing extractor: {e}")
        return extracted

    async def _classify_all(self, run_id: str, extracted: List[ExtractedItem], summary: RunSummary) -> None:
        if not extracted:
            return
        classifier = self.classifier_factory()
        semaphore = asyncio.Semaphore(self.config.ai_concurrency)
        model = self.config.ai_model
        prompt_version = self.config.prompt_version

        async def _one(item: ExtractedItem) -> None:
            async with semaphore:
                t0 = time.monotonic()
                try:
                    fields = await classifier.classify(item.headline, item.content)
                except Exception as e:
                    summary.failed += 1
                    log_item_event(
                        run_id=run_id,
                        url=item.url,
                        url_hash=item.url_hash,
                        stage="ai",
                        status="fail",
                        duration_ms=elapsed_ms(t0),
                        error=_err(e),
                    )
                    return
                log_item_event(
                    run_id=run_id, url=item.url, url_hash=item.url_hash, stage="ai", status="ok", duration_ms=elapsed_ms(t0)
                )

                t1 = time.monotonic()
                try:
                    inserted = await self.result_store.insert_if_absent(
                        item, fields, model=model, prompt_version=prompt_version
                    )
                except Exception as e:
                    summary.failed += 1
                    log_item_event(
                        run_id=run_id,
                        url=item.url,
                        url_hash=item.url_hash,
                        stage="store",
                        status="fail",
                        duration_ms=elapsed_ms(t1),
                        error=_err(e),
                    )
                    return
                if not inserted:
                    summary.already_done += 1
                    log_item_event(
                        run_id=run_id,
                        url=item.url,
                        url_hash=item.url_hash,
                        stage="store",
                        status="skip",
                        duration_ms=elapsed_ms(t1),
                    )
                    return
                summary.ai_ok += 1
                log_item_event(
                    run_id=run_id, url=item.url, url_hash=item.url_hash, stage="store", status="ok", duration_ms=elapsed_ms(t1)
                )

        await asyncio.gather(*(_one(item) for item in extracted))
