"""Fulltext rendering + extraction.

Policy:
- Pages are rendered in a headless browser (one browser per run, one isolated
  context per article) so script-built article bodies are visible.
- Readable text is pulled out with trafilatura and whitespace-collapsed.
- Pages below the minimum word count are skipped, not failed.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Callable, Optional, Protocol
from urllib.parse import urlparse

import trafilatura
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from newsimpact.errors import TaskTimeoutError
from newsimpact.ingestion.article_types import ExtractionResult
from newsimpact.utils.retry import with_timeout
from newsimpact.utils.text import collapse_whitespace, count_words

logger = logging.getLogger(__name__)


_PRIVATE_NETS = [
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]


def _is_private_ip(hostname: str) -> bool:
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return any(ip in net for net in _PRIVATE_NETS)


def validate_fetch_url(url: str) -> Optional[str]:
    """Return error string if URL should not be rendered (SSRF/abuse protections)."""
    try:
        p = urlparse(url)
    except ValueError:
        return "invalid_url"
    if p.scheme not in ("http", "https"):
        return "bad_scheme"
    host = (p.hostname or "").strip().lower()
    if not host:
        return "missing_host"
    if host in ("localhost", "localhost.localdomain"):
        return "blocked_host"
    if _is_private_ip(host):
        return "blocked_private_ip"
    return None


def extract_readable_text(html: str, base_url: Optional[str] = None) -> str:
    if not html or not html.strip():
        return ""
    text = trafilatura.extract(html, url=base_url, include_comments=False, include_tables=False)
    return collapse_whitespace(text or "")


class RenderPage(Protocol):
    async def render(self, url: str) -> str:
        ...


class Renderer(Protocol):
    """Capability interface for a stateful headless renderer."""

    def page(self) -> AbstractAsyncContextManager[RenderPage]:
        ...

    async def close(self) -> None:
        ...


class _PlaywrightPage:
    def __init__(self, page, timeout_ms: int):
        self._page = page
        self._timeout_ms = timeout_ms

    async def render(self, url: str) -> str:
        try:
            await self._page.goto(url, wait_until="domcontentloaded", timeout=self._timeout_ms)
        except PlaywrightTimeoutError as e:
            raise TaskTimeoutError(f"Extraction timeout after {self._timeout_ms}ms") from e
        return await self._page.content()


class PlaywrightRenderer:
    """Headless Chromium renderer; the browser is launched lazily and reused."""

    def __init__(self, *, timeout_ms: int, user_agent: Optional[str] = None):
        self.timeout_ms = timeout_ms
        self.user_agent = user_agent
        self._playwright = None
        self._browser = None
        self._launch_lock = asyncio.Lock()

    async def _get_browser(self):
        async with self._launch_lock:
            if self._browser is None:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=True)
                logger.info("Headless browser launched")
            return self._browser

    @asynccontextmanager
    async def page(self) -> AsyncIterator[_PlaywrightPage]:
        browser = await self._get_browser()
        context = await browser.new_context(user_agent=self.user_agent)
        try:
            page = await context.new_page()
            yield _PlaywrightPage(page, self.timeout_ms)
        finally:
            try:
                await context.close()
            except Exception as e:
                logger.warning(f"Error closing browser context: {e}")

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
            logger.info("Headless browser closed")
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None


class ArticleExtractor:
    """Render -> readable text -> word-count policy, under a per-item deadline.

    ``extract`` returns None for pages that are blocked or too short and raises
    TaskTimeoutError when the deadline passes. The render context is released
    on every exit path.
    """

    def __init__(
        self,
        renderer: Renderer,
        *,
        timeout_ms: int,
        min_word_count: int,
        text_extractor: Callable[[str, Optional[str]], str] = extract_readable_text,
    ):
        self.renderer = renderer
        self.timeout_ms = timeout_ms
        self.min_word_count = min_word_count
        self.text_extractor = text_extractor

    async def _render_and_read(self, page: RenderPage, url: str) -> Optional[ExtractionResult]:
        try:
            html = await page.render(url)
        except PlaywrightTimeoutError as e:
            # The browser's navigation timer can fire before our deadline does.
            raise TaskTimeoutError(f"Extraction timeout after {self.timeout_ms}ms") from e
        content = await asyncio.to_thread(self.text_extractor, html, url)
        content = collapse_whitespace(content)
        words = count_words(content)
        if not content or words < self.min_word_count:
            logger.debug(f"Skipping {url}: {words} words < {self.min_word_count}")
            return None
        return ExtractionResult(content=content, word_count=words)

    async def extract(self, url: str) -> Optional[ExtractionResult]:
        err = validate_fetch_url(url)
        if err:
            logger.info(f"Not rendering {url}: {err}")
            return None
        async with self.renderer.page() as page:
            return await with_timeout(
                self._render_and_read(page, url),
                self.timeout_ms / 1000.0,
                f"Extraction timeout after {self.timeout_ms}ms",
            )

    async def close(self) -> None:
        await self.renderer.close()
