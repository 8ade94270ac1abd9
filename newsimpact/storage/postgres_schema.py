"""Postgres schema management for the news-impact pipeline.

Schema creation is idempotent (CREATE IF NOT EXISTS) and safe to run at
every worker start.
"""

from __future__ import annotations

from typing import Iterable, Optional

import psycopg


SCHEMA_STATEMENTS: list[str] = [
    # Watchlists are owned by the web app; the pipeline only reads distinct tickers.
    """
    CREATE TABLE IF NOT EXISTS watchlist_items (
      id BIGSERIAL PRIMARY KEY,
      user_id TEXT NOT NULL,
      ticker TEXT NOT NULL,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      UNIQUE (user_id, ticker)
    );
    """,
    # Raw observation log: one row per canonical URL, last write wins on metadata.
    """
    CREATE TABLE IF NOT EXISTS news_raw_ingest (
      url_hash TEXT PRIMARY KEY,
      url TEXT NOT NULL,
      canonical_url TEXT NOT NULL,
      headline TEXT NOT NULL,
      source TEXT,
      published_at TIMESTAMPTZ NOT NULL,
      tickers TEXT[] NOT NULL DEFAULT '{}',
      fetched_at TIMESTAMPTZ NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_news_raw_ingest_published_at ON news_raw_ingest (published_at DESC);",
    # Classification results: insert-once per url_hash.
    """
    CREATE TABLE IF NOT EXISTS news_impact_results (
      url_hash TEXT PRIMARY KEY,
      url TEXT NOT NULL,
      canonical_url TEXT NOT NULL,
      headline TEXT NOT NULL,
      impact SMALLINT NOT NULL CHECK (impact BETWEEN 1 AND 10),
      direction TEXT NOT NULL,
      category TEXT NOT NULL,
      points TEXT[] NOT NULL,
      confidence REAL NOT NULL CHECK (confidence >= 0 AND confidence <= 1),
      model TEXT NOT NULL,
      prompt_version TEXT NOT NULL,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    # Denormalized read view for the news API.
    """
    CREATE TABLE IF NOT EXISTS news (
      url_hash TEXT PRIMARY KEY,
      url TEXT NOT NULL,
      canonical_url TEXT NOT NULL,
      headline TEXT NOT NULL,
      published_at TIMESTAMPTZ NOT NULL,
      source TEXT,
      tickers TEXT[] NOT NULL DEFAULT '{}',
      impact SMALLINT NOT NULL,
      direction TEXT NOT NULL,
      category TEXT NOT NULL,
      points TEXT[] NOT NULL,
      confidence REAL NOT NULL,
      model TEXT NOT NULL,
      prompt_version TEXT NOT NULL,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_news_published_at ON news (published_at DESC);",
    "CREATE INDEX IF NOT EXISTS idx_news_tickers ON news USING GIN (tickers);",
    # Single-value pipeline cursors (e.g. last_ingest_at).
    """
    CREATE TABLE IF NOT EXISTS pipeline_state (
      id TEXT PRIMARY KEY,
      value TIMESTAMPTZ NOT NULL,
      updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );
    """,
]


def ensure_postgres_schema(pg_dsn: str, *, statements: Optional[Iterable[str]] = None) -> None:
    """Ensure Postgres schema exists."""
    stmts = list(statements) if statements is not None else SCHEMA_STATEMENTS
    with psycopg.connect(pg_dsn, autocommit=True) as conn:
        with conn.cursor() as cur:
            for s in stmts:
                cur.execute(s)
