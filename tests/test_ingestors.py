import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

import requests

from newsimpact.errors import NewsProviderError
from newsimpact.ingestion.article_types import NewsItem
from newsimpact.ingestion.ingestors import (
    BaseNewsProvider,
    MassiveNewsProvider,
    fetch_news_since,
    is_retryable_fetch_error,
)
from newsimpact.utils.retry import RetryPolicy

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def _response(status=200, payload=None):
    resp = mock.Mock()
    resp.status_code = status
    if isinstance(payload, Exception):
        resp.json.side_effect = payload
    else:
        resp.json.return_value = payload
    return resp


class TestMassiveNewsProvider(unittest.TestCase):
    def setUp(self):
        self.provider = MassiveNewsProvider(api_key="k-123", base_url="https://api.massive.com/")

    @mock.patch("newsimpact.ingestion.ingestors.requests.get")
    def test_request_parameters(self, get):
        get.return_value = _response(payload={"results": []})
        self.provider.fetch_news(tickers=["AAPL"], from_=NOW - timedelta(hours=24), to=NOW, limit=50)

        args, kwargs = get.call_args
        self.assertEqual(args[0], "https://api.massive.com/v2/reference/news")
        params = kwargs["params"]
        self.assertEqual(params["ticker"], "AAPL")
        self.assertEqual(params["published_utc.gte"], "2025-01-14T12:00:00Z")
        self.assertEqual(params["published_utc.lt"], "2025-01-15T12:00:00Z")
        self.assertNotIn("published_utc.lte", params)
        self.assertEqual(params["order"], "desc")
        self.assertEqual(params["sort"], "published_utc")
        self.assertEqual(params["limit"], 50)
        self.assertEqual(params["apiKey"], "k-123")

    @mock.patch("newsimpact.ingestion.ingestors.requests.get")
    def test_rows_mapped_and_incomplete_rows_dropped(self, get):
        get.return_value = _response(
            payload={
                "results": [
                    {
                        "article_url": "https://news.example.com/a",
                        "title": "Apple beats estimates",
                        "published_utc": "2025-01-15T09:30:00Z",
                        "publisher": {"name": "Example Wire"},
                        "tickers": ["AAPL", "MSFT"],
                    },
                    {"article_url": "", "title": "No url", "published_utc": "2025-01-15T09:30:00Z"},
                    {"article_url": "https://news.example.com/b", "title": "", "published_utc": "2025-01-15T09:30:00Z"},
                    {"article_url": "https://news.example.com/c", "title": "Bad date", "published_utc": "yesterday"},
                    "not-a-row",
                ]
            }
        )
        items = self.provider.fetch_news(tickers=["AAPL"], from_=NOW - timedelta(hours=1), to=NOW)
        self.assertEqual(len(items), 1)
        item = items[0]
        self.assertEqual(item.url, "https://news.example.com/a")
        self.assertEqual(item.source, "Example Wire")
        self.assertEqual(item.tickers, ("AAPL", "MSFT"))
        self.assertEqual(item.published_at, datetime(2025, 1, 15, 9, 30, tzinfo=timezone.utc))

    @mock.patch("newsimpact.ingestion.ingestors.requests.get")
    def test_http_errors_carry_status(self, get):
        get.return_value = _response(status=429, payload={})
        with self.assertRaises(NewsProviderError) as ctx:
            self.provider.fetch_news(tickers=["AAPL"])
        self.assertEqual(ctx.exception.status, 429)
        self.assertTrue(ctx.exception.retryable)

        get.return_value = _response(status=401, payload={})
        with self.assertRaises(NewsProviderError) as ctx:
            self.provider.fetch_news(tickers=["AAPL"])
        self.assertFalse(ctx.exception.retryable)

    @mock.patch("newsimpact.ingestion.ingestors.requests.get")
    def test_transport_error_is_retryable(self, get):
        get.side_effect = requests.ConnectionError("connection reset")
        with self.assertRaises(NewsProviderError) as ctx:
            self.provider.fetch_news(tickers=["AAPL"])
        self.assertIsNone(ctx.exception.status)
        self.assertTrue(is_retryable_fetch_error(ctx.exception))

    @mock.patch("newsimpact.ingestion.ingestors.requests.get")
    def test_non_json_body(self, get):
        get.return_value = _response(payload=ValueError("no json"))
        with self.assertRaises(NewsProviderError):
            self.provider.fetch_news(tickers=["AAPL"])


class ScriptedProvider(BaseNewsProvider):
    name = "scripted"

    def __init__(self, script):
        self.script = {k: list(v) for k, v in script.items()}
        self.calls = []

    def fetch_news(self, *, tickers, from_=None, to=None, limit=10):
        ticker = tickers[0]
        self.calls.append((ticker, from_, to, limit))
        outcome = self.script[ticker].pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _item(url, ticker):
    return NewsItem(url=url, title=f"{ticker} headline", published_at=NOW - timedelta(minutes=5), tickers=(ticker,))


async def _no_sleep(_delay):
    return None


class TestFetchNewsSince(unittest.IsolatedAsyncioTestCase):
    async def test_no_tickers_makes_no_calls(self):
        provider = ScriptedProvider({})
        result = await fetch_news_since(provider, NOW - timedelta(hours=1), [], retry_policy=RetryPolicy(), now=NOW)
        self.assertEqual(result.items, [])
        self.assertEqual(provider.calls, [])

    async def test_one_call_per_ticker_with_window(self):
        since = NOW - timedelta(hours=2)
        provider = ScriptedProvider(
            {
                "AAPL": [[_item("https://n.example.com/1", "AAPL"), _item("https://n.example.com/2", "AAPL")]],
                "MSFT": [[_item("https://n.example.com/3", "MSFT")]],
            }
        )
        result = await fetch_news_since(
            provider, since, ["AAPL", "MSFT"], retry_policy=RetryPolicy(), limit=25, now=NOW, sleep=_no_sleep
        )
        self.assertEqual(len(result.items), 3)
        self.assertEqual(result.items[0].headline, "AAPL headline")
        self.assertEqual(sorted(c[0] for c in provider.calls), ["AAPL", "MSFT"])
        for _, from_, to, limit in provider.calls:
            self.assertEqual(from_, since)
            self.assertEqual(to, NOW)
            self.assertEqual(limit, 25)

    async def test_transient_failure_retried(self):
        provider = ScriptedProvider(
            {"AAPL": [NewsProviderError("http_503", status=503), [_item("https://n.example.com/1", "AAPL")]]}
        )
        result = await fetch_news_since(
            provider, NOW - timedelta(hours=1), ["AAPL"], retry_policy=RetryPolicy(attempts=3), now=NOW, sleep=_no_sleep
        )
        self.assertEqual(len(result.items), 1)
        self.assertEqual(len(provider.calls), 2)
        self.assertEqual(result.failed_tickers, {})

    async def test_failing_ticker_does_not_sink_others(self):
        provider = ScriptedProvider(
            {
                "AAPL": [NewsProviderError("http_401", status=401)],
                "MSFT": [[_item("https://n.example.com/3", "MSFT")]],
            }
        )
        result = await fetch_news_since(
            provider, NOW - timedelta(hours=1), ["AAPL", "MSFT"], retry_policy=RetryPolicy(), now=NOW, sleep=_no_sleep
        )
        self.assertEqual([i.url for i in result.items], ["https://n.example.com/3"])
        self.assertIn("AAPL", result.failed_tickers)
        # 401 is not retried
        self.assertEqual([c[0] for c in provider.calls].count("AAPL"), 1)

    async def test_exhausted_retries_reported(self):
        provider = ScriptedProvider({"AAPL": [NewsProviderError("boom")] * 3})
        result = await fetch_news_since(
            provider, NOW - timedelta(hours=1), ["AAPL"], retry_policy=RetryPolicy(attempts=3), now=NOW, sleep=_no_sleep
        )
        self.assertEqual(result.items, [])
        self.assertEqual(len(provider.calls), 3)
        self.assertEqual(result.failed_tickers, {"AAPL": "boom"})


if __name__ == "__main__":
    unittest.main()
