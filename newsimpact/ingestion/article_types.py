"""Shared ingestion data types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class NewsItem:
    """Article metadata as returned by a news provider."""

    url: str
    title: str
    published_at: datetime
    source: Optional[str] = None
    tickers: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FetchedItem:
    """Candidate article for one run (pre-canonicalization)."""

    url: str
    headline: str
    published_at: datetime
    source: Optional[str] = None
    tickers: Tuple[str, ...] = ()


@dataclass(frozen=True, kw_only=True)
class CanonicalItem(FetchedItem):
    """FetchedItem plus its dedup identity.

    Two items with the same ``url_hash`` are the same article even if ``url`` differs.
    """

    canonical_url: str
    url_hash: str


@dataclass(frozen=True, kw_only=True)
class ExtractedItem(CanonicalItem):
    content: str
    word_count: int = 0


@dataclass(frozen=True)
class ExtractionResult:
    content: str
    word_count: int


@dataclass
class RunSummary:
    run_id: str
    ingested: int = 0
    extracted_ok: int = 0
    skipped_no_content: int = 0
    ai_ok: int = 0
    failed: int = 0
    already_done: int = 0
    skip_reason: Optional[str] = None

    def as_dict(self) -> dict:
        out = {
            "runId": self.run_id,
            "ingested": self.ingested,
            "extracted_ok": self.extracted_ok,
            "skipped_no_content": self.skipped_no_content,
            "ai_ok": self.ai_ok,
            "failed": self.failed,
            "already_done": self.already_done,
        }
        if self.skip_reason:
            out["skip_reason"] = self.skip_reason
        return out
