"""Durable pipeline cursors (the ingest watermark)."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import psycopg

LAST_INGEST_STATE_ID = "last_ingest_at"


def default_watermark(now: datetime, lookback_hours: int) -> datetime:
    return now - timedelta(hours=lookback_hours)


class PostgresWatermarkStore:
    """Single current value keyed by a fixed name; no history."""

    def __init__(self, pg_dsn: str, *, lookback_hours: int = 24, key: str = LAST_INGEST_STATE_ID):
        self.pg_dsn = pg_dsn
        self.lookback_hours = lookback_hours
        self.key = key

    async def get(self, *, now: Optional[datetime] = None) -> datetime:
        async with await psycopg.AsyncConnection.connect(self.pg_dsn) as conn:
            async with conn.cursor() as cur:
                await cur.execute("SELECT value FROM pipeline_state WHERE id = %s", (self.key,))
                row = await cur.fetchone()
        if row and row[0] is not None:
            return row[0]
        return default_watermark(now or datetime.now(timezone.utc), self.lookback_hours)

    async def set(self, value: datetime) -> None:
        async with await psycopg.AsyncConnection.connect(self.pg_dsn, autocommit=True) as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    INSERT INTO pipeline_state (id, value)
                    VALUES (%s, %s)
                    ON CONFLICT (id) DO UPDATE SET value = EXCLUDED.value, updated_at = now()
                    """,
                    (self.key, value),
                )
