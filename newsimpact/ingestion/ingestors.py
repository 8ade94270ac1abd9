"""News provider adapters and the per-ticker incremental fetcher.

- MassiveNewsProvider: Massive (formerly Polygon) reference-news REST API
- fetch_news_since: one retried provider call per watched ticker, run
  concurrently; a ticker that exhausts its retries is reported, not raised.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import requests

from newsimpact.errors import NewsProviderError
from newsimpact.ingestion.article_types import FetchedItem, NewsItem
from newsimpact.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)


def _parse_dt(dt: Any) -> Optional[datetime]:
    if not dt:
        return None
    if isinstance(dt, datetime):
        parsed = dt
    else:
        s = str(dt).strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(s)
        except ValueError:
            return None
    # Normalize naive to UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class BaseNewsProvider:
    name: str = "base"

    def fetch_news(
        self,
        *,
        tickers: Sequence[str],
        from_: Optional[datetime] = None,
        to: Optional[datetime] = None,
        limit: int = 10,
    ) -> List[NewsItem]:
        raise NotImplementedError


@dataclass(frozen=True)
class MassiveNewsProvider(BaseNewsProvider):
    api_key: str
    base_url: str = "https://api.massive.com"
    timeout: int = 30

    name: str = "massive"

    def fetch_news(
        self,
        *,
        tickers: Sequence[str],
        from_: Optional[datetime] = None,
        to: Optional[datetime] = None,
        limit: int = 10,
    ) -> List[NewsItem]:
        params: Dict[str, Any] = {
            "order": "desc",
            "sort": "published_utc",
            "limit": min(max(limit, 1), 1000),
            "apiKey": self.api_key,
        }
        if tickers:
            params["ticker"] = tickers[0]
        if from_ is not None:
            params["published_utc.gte"] = _iso(from_)
        if to is not None:
            params["published_utc.lt"] = _iso(to)
        try:
            resp = requests.get(
                f"{self.base_url.rstrip('/')}/v2/reference/news",
                params=params,
                headers={"User-Agent": "newsimpact/1.0"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NewsProviderError(f"news provider request failed: {e}") from e
        if resp.status_code >= 400:
            raise NewsProviderError(f"news provider http_{resp.status_code}", status=resp.status_code)
        try:
            data = resp.json() or {}
        except ValueError as e:
            raise NewsProviderError("news provider returned non-JSON body") from e

        out: List[NewsItem] = []
        for r in data.get("results") or []:
            if not isinstance(r, dict):
                continue
            url = str(r.get("article_url") or "").strip()
            title = str(r.get("title") or "").strip()
            published = _parse_dt(r.get("published_utc"))
            if not url or not title or published is None:
                continue
            publisher = r.get("publisher")
            source = publisher.get("name") if isinstance(publisher, dict) else None
            out.append(
                NewsItem(
                    url=url,
                    title=title,
                    published_at=published,
                    source=source or None,
                    tickers=tuple(str(t) for t in (r.get("tickers") or [])),
                )
            )
        return out


def is_retryable_fetch_error(error: BaseException) -> bool:
    if isinstance(error, NewsProviderError):
        return error.retryable
    return True


@dataclass
class FetchResult:
    items: List[FetchedItem] = field(default_factory=list)
    failed_tickers: Dict[str, str] = field(default_factory=dict)


async def fetch_news_since(
    provider: BaseNewsProvider,
    since: datetime,
    tickers: Sequence[str],
    *,
    retry_policy: RetryPolicy,
    limit: int = 50,
    now: Optional[datetime] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> FetchResult:
    """Fetch articles published in [since, now) for every ticker concurrently."""
    result = FetchResult()
    if not tickers:
        return result
    to = now or datetime.now(timezone.utc)

    async def _one(ticker: str) -> List[NewsItem]:
        return await retry_policy.run(
            lambda: asyncio.to_thread(provider.fetch_news, tickers=[ticker], from_=since, to=to, limit=limit),
            is_retryable=is_retryable_fetch_error,
            sleep=sleep,
            label=f"news fetch {ticker}",
        )

    batches = await asyncio.gather(*(_one(t) for t in tickers), return_exceptions=True)
    for ticker, batch in zip(tickers, batches):
        if isinstance(batch, BaseException):
            if not isinstance(batch, Exception):
                raise batch
            logger.error(f"News fetch for {ticker} failed after retries: {batch}")
            result.failed_tickers[ticker] = str(batch)
            continue
        for it in batch:
            result.items.append(
                FetchedItem(
                    url=it.url,
                    headline=it.title,
                    published_at=it.published_at,
                    source=it.source,
                    tickers=tuple(it.tickers),
                )
            )
    return result
