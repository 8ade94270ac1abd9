"""Pipeline configuration loaded from the environment and validated at startup."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv

from newsimpact.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_PG_DSN = "dbname=newsimpact user=newsimpact password=newsimpact host=localhost port=5432"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int, errors: List[str]) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        errors.append(f"{name} must be an integer (got {raw!r})")
        return default


@dataclass
class PipelineConfig:
    """Configuration for the news-impact pipeline.

    Durations are in milliseconds to match the environment variables; use
    ``retry_policy`` for the seconds-based policy object.
    """

    pg_dsn: str = DEFAULT_PG_DSN
    massive_api_key: str = ""
    massive_base_url: str = "https://api.massive.com"
    openai_api_key: str = ""

    # Scheduling
    cron_schedule: str = "0 * * * *"
    cron_enabled: bool = True

    # Worker pools
    extract_concurrency: int = 4
    ai_concurrency: int = 4

    # Extraction policy
    extract_timeout_ms: int = 5000
    min_word_count: int = 200

    # Classification
    ai_max_chars: int = 12000
    ai_model: str = "gpt-4o-mini"
    prompt_version: str = "v1"

    # Retries (news provider + LLM)
    retry_attempts: int = 3
    retry_base_delay_ms: int = 300
    retry_max_delay_ms: int = 3000

    # Ingestion window
    initial_lookback_hours: int = 24
    news_limit: int = 50

    log_dir: str = "logs"

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay_ms / 1000.0,
            max_delay=self.retry_max_delay_ms / 1000.0,
        )

    @classmethod
    def from_env(cls, *, dotenv_path: Optional[str] = None) -> "PipelineConfig":
        """Load and validate configuration from environment variables"""
        load_dotenv(dotenv_path)
        errors: List[str] = []
        config = cls(
            pg_dsn=os.getenv("PG_DSN", DEFAULT_PG_DSN),
            massive_api_key=os.getenv("MASSIVE_API_KEY", ""),
            massive_base_url=os.getenv("MASSIVE_BASE_URL", "https://api.massive.com"),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            cron_schedule=os.getenv("PIPELINE_CRON_SCHEDULE", "0 * * * *"),
            cron_enabled=_env_bool("PIPELINE_CRON_ENABLED", True),
            extract_concurrency=_env_int("PIPELINE_EXTRACT_CONCURRENCY", 4, errors),
            ai_concurrency=_env_int("PIPELINE_AI_CONCURRENCY", 4, errors),
            extract_timeout_ms=_env_int("PIPELINE_EXTRACT_TIMEOUT_MS", 5000, errors),
            min_word_count=_env_int("PIPELINE_MIN_WORD_COUNT", 200, errors),
            ai_max_chars=_env_int("PIPELINE_AI_MAX_CHARS", 12000, errors),
            ai_model=os.getenv("PIPELINE_AI_MODEL", "gpt-4o-mini"),
            prompt_version=os.getenv("PIPELINE_PROMPT_VERSION", "v1"),
            retry_attempts=_env_int("PIPELINE_RETRY_ATTEMPTS", 3, errors),
            retry_base_delay_ms=_env_int("PIPELINE_RETRY_BASE_DELAY_MS", 300, errors),
            retry_max_delay_ms=_env_int("PIPELINE_RETRY_MAX_DELAY_MS", 3000, errors),
            initial_lookback_hours=_env_int("PIPELINE_INITIAL_LOOKBACK_HOURS", 24, errors),
            news_limit=_env_int("PIPELINE_NEWS_LIMIT", 50, errors),
            log_dir=os.getenv("PIPELINE_LOG_DIR", "logs"),
        )
        config._validate(errors)
        return config

    def _validate(self, errors: Optional[List[str]] = None) -> None:
        """Validate configuration values"""
        errors = list(errors or [])

        if not self.pg_dsn.strip():
            errors.append("PG_DSN is required")
        if not self.massive_base_url.startswith(("http://", "https://")):
            errors.append("MASSIVE_BASE_URL must be an http(s) URL")

        if self.cron_enabled:
            try:
                CronTrigger.from_crontab(self.cron_schedule)
            except ValueError as e:
                errors.append(f"PIPELINE_CRON_SCHEDULE is not a valid crontab expression: {e}")

        if not 1 <= self.extract_concurrency <= 32:
            errors.append("PIPELINE_EXTRACT_CONCURRENCY should be between 1 and 32")
        if not 1 <= self.ai_concurrency <= 32:
            errors.append("PIPELINE_AI_CONCURRENCY should be between 1 and 32")
        if not 1000 <= self.extract_timeout_ms <= 5000:
            errors.append("PIPELINE_EXTRACT_TIMEOUT_MS should be between 1000 and 5000")
        if self.min_word_count < 50:
            errors.append("PIPELINE_MIN_WORD_COUNT should be at least 50")
        if self.ai_max_chars < 1000:
            errors.append("PIPELINE_AI_MAX_CHARS should be at least 1000")
        if not 1 <= self.retry_attempts <= 10:
            errors.append("PIPELINE_RETRY_ATTEMPTS should be between 1 and 10")
        if self.retry_base_delay_ms < 50:
            errors.append("PIPELINE_RETRY_BASE_DELAY_MS should be at least 50")
        if self.retry_max_delay_ms < 100:
            errors.append("PIPELINE_RETRY_MAX_DELAY_MS should be at least 100")
        elif self.retry_max_delay_ms < self.retry_base_delay_ms:
            errors.append("PIPELINE_RETRY_MAX_DELAY_MS should not be below PIPELINE_RETRY_BASE_DELAY_MS")
        if not self.prompt_version.strip():
            errors.append("PIPELINE_PROMPT_VERSION is required")
        if not self.ai_model.strip():
            errors.append("PIPELINE_AI_MODEL is required")
        if not 1 <= self.initial_lookback_hours <= 168:
            errors.append("PIPELINE_INITIAL_LOOKBACK_HOURS should be between 1 and 168")
        if not 1 <= self.news_limit <= 1000:
            errors.append("PIPELINE_NEWS_LIMIT should be between 1 and 1000")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors)
            raise ValueError(error_msg)

        logger.info(
            f"Configuration validated: extract_concurrency={self.extract_concurrency} "
            f"ai_concurrency={self.ai_concurrency} model={self.ai_model} prompt={self.prompt_version}"
        )
