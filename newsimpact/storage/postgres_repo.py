"""Postgres repository for watched tickers and the raw news observation log.

This is intentionally lightweight (psycopg + SQL) to keep control and transparency.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

import psycopg

from newsimpact.ingestion.article_types import CanonicalItem


def normalize_tickers(raw: Iterable[Optional[str]]) -> List[str]:
    """Uppercase, trim, drop empties, dedupe (first-seen order)."""
    seen = set()
    out: List[str] = []
    for t in raw:
        if not isinstance(t, str):
            continue
        norm = t.strip().upper()
        if not norm or norm in seen:
            continue
        seen.add(norm)
        out.append(norm)
    return out


class PostgresWatchlistStore:
    def __init__(self, pg_dsn: str):
        self.pg_dsn = pg_dsn

    async def distinct_tickers(self) -> List[str]:
        async with await psycopg.AsyncConnection.connect(self.pg_dsn) as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    SELECT DISTINCT ticker
                    FROM watchlist_items
                    WHERE ticker IS NOT NULL AND btrim(ticker) <> ''
                    """
                )
                rows = await cur.fetchall()
        return normalize_tickers(r[0] for r in rows)


class PostgresRawNewsStore:
    def __init__(self, pg_dsn: str):
        self.pg_dsn = pg_dsn

    async def upsert_many(self, items: Sequence[CanonicalItem], *, fetched_at: Optional[datetime] = None) -> int:
        """Upsert observations by url_hash in one batch; returns rows sent.

        Mutable fields are fully replaced and fetched_at is stamped; rows are
        never deleted.
        """
        if not items:
            return 0
        stamp = fetched_at or datetime.now(timezone.utc)
        params = [
            {
                "url_hash": it.url_hash,
                "url": it.url,
                "canonical_url": it.canonical_url,
                "headline": it.headline,
                "source": it.source,
                "published_at": it.published_at,
                "tickers": list(it.tickers),
                "fetched_at": stamp,
            }
            for it in items
        ]
        async with await psycopg.AsyncConnection.connect(self.pg_dsn, autocommit=True) as conn:
            async with conn.cursor() as cur:
                await cur.executemany(
                    """
                    INSERT INTO news_raw_ingest (
                      url_hash, url, canonical_url, headline, source, published_at, tickers, fetched_at
                    )
                    VALUES (
                      %(url_hash)s, %(url)s, %(canonical_url)s, %(headline)s, %(source)s,
                      %(published_at)s, %(tickers)s, %(fetched_at)s
                    )
                    ON CONFLICT (url_hash) DO UPDATE SET
                      url = EXCLUDED.url,
                      canonical_url = EXCLUDED.canonical_url,
                      headline = EXCLUDED.headline,
                      source = EXCLUDED.source,
                      published_at = EXCLUDED.published_at,
                      tickers = EXCLUDED.tickers,
                      fetched_at = EXCLUDED.fetched_at
                    """,
                    params,
                )
        return len(params)
