"""Exception types shared by the news-impact pipeline."""

from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for pipeline errors."""


class PipelineAlreadyRunningError(PipelineError):
    def __init__(self) -> None:
        super().__init__("Pipeline run already in progress")


class InvalidUrlError(PipelineError, ValueError):
    """Raised when an article URL cannot be canonicalized."""


class TaskTimeoutError(PipelineError, TimeoutError):
    """Raised when a deadline-wrapped task does not finish in time."""


class ClassificationError(PipelineError):
    """LLM output missing, wrong tool, or not matching the impact schema."""


class NewsProviderError(PipelineError):
    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def retryable(self) -> bool:
        # Connection errors carry no status; 429 and 5xx are transient.
        return self.status is None or self.status == 429 or self.status >= 500
