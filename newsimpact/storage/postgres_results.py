"""Postgres-backed impact results (insert-once) and the denormalized news view.

A result row and its news-view row are written in one transaction: either both
land or neither does, so an item whose view write failed is retried next run.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Set

import psycopg

from newsimpact.contracts.impact_result import ImpactFields
from newsimpact.ingestion.article_types import CanonicalItem

_INSERT_RESULT_SQL = """
INSERT INTO news_impact_results (
  url_hash, url, canonical_url, headline, impact, direction, category,
  points, confidence, model, prompt_version, created_at
)
VALUES (
  %(url_hash)s, %(url)s, %(canonical_url)s, %(headline)s, %(impact)s, %(direction)s,
  %(category)s, %(points)s, %(confidence)s, %(model)s, %(prompt_version)s, now()
)
ON CONFLICT (url_hash) DO NOTHING
RETURNING url_hash
"""

_UPSERT_NEWS_VIEW_SQL = """
INSERT INTO news (
  url_hash, url, canonical_url, headline, published_at, source, tickers,
  impact, direction, category, points, confidence, model, prompt_version
)
VALUES (
  %(url_hash)s, %(url)s, %(canonical_url)s, %(headline)s, %(published_at)s, %(source)s,
  %(tickers)s, %(impact)s, %(direction)s, %(category)s, %(points)s, %(confidence)s,
  %(model)s, %(prompt_version)s
)
ON CONFLICT (url_hash) DO UPDATE SET
  url = EXCLUDED.url,
  canonical_url = EXCLUDED.canonical_url,
  headline = EXCLUDED.headline,
  published_at = EXCLUDED.published_at,
  source = EXCLUDED.source,
  tickers = EXCLUDED.tickers,
  impact = EXCLUDED.impact,
  direction = EXCLUDED.direction,
  category = EXCLUDED.category,
  points = EXCLUDED.points,
  confidence = EXCLUDED.confidence,
  model = EXCLUDED.model,
  prompt_version = EXCLUDED.prompt_version,
  updated_at = now()
"""


def _result_params(item: CanonicalItem, fields: ImpactFields, *, model: str, prompt_version: str) -> Dict[str, Any]:
    return {
        "url_hash": item.url_hash,
        "url": item.url,
        "canonical_url": item.canonical_url,
        "headline": item.headline,
        "published_at": item.published_at,
        "source": item.source,
        "tickers": list(item.tickers),
        "impact": fields.impact,
        "direction": fields.direction,
        "category": fields.category,
        "points": list(fields.points),
        "confidence": fields.confidence,
        "model": model,
        "prompt_version": prompt_version,
    }


class PostgresImpactResultStore:
    def __init__(self, pg_dsn: str):
        self.pg_dsn = pg_dsn

    async def existing_hashes(self, hashes: Iterable[str]) -> Set[str]:
        wanted = sorted(set(hashes))
        if not wanted:
            return set()
        async with await psycopg.AsyncConnection.connect(self.pg_dsn) as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    "SELECT url_hash FROM news_impact_results WHERE url_hash = ANY(%s)",
                    (wanted,),
                )
                rows = await cur.fetchall()
        return {r[0] for r in rows}

    async def insert_if_absent(
        self,
        item: CanonicalItem,
        fields: ImpactFields,
        *,
        model: str,
        prompt_version: str,
    ) -> bool:
        """Insert the result and refresh the news view unless a result exists for item.url_hash.

        Returns True if this call inserted. The view is only written when the
        insert wins, and both writes commit together.
        """
        params = _result_params(item, fields, model=model, prompt_version=prompt_version)
        async with await psycopg.AsyncConnection.connect(self.pg_dsn) as conn:
            async with conn.transaction():
                async with conn.cursor() as cur:
                    await cur.execute(_INSERT_RESULT_SQL, params)
                    if (await cur.fetchone()) is None:
                        return False
                    await cur.execute(_UPSERT_NEWS_VIEW_SQL, params)
        return True
