import unittest

from newsimpact.errors import InvalidUrlError
from newsimpact.ingestion.url_utils import canonical_identity, canonicalize_url, url_hash


class TestUrlCanonicalization(unittest.TestCase):
    def test_canonicalize_strips_tracking_params(self):
        raw = "https://Example.com/path/to/article?utm_source=x&utm_medium=y&id=123&gclid=AAA#section"
        canon = canonicalize_url(raw)
        self.assertEqual(canon, "https://example.com/path/to/article?id=123")

    def test_any_utm_prefixed_key_is_stripped(self):
        self.assertEqual(
            canonicalize_url("https://example.com/a?utm_whatever=1&utm_swu=2&x=1"),
            "https://example.com/a?x=1",
        )

    def test_query_params_sorted_by_key(self):
        self.assertEqual(canonicalize_url("https://example.com/a?b=2&a=1&c=3"), "https://example.com/a?a=1&b=2&c=3")

    def test_default_ports_dropped(self):
        self.assertEqual(canonicalize_url("https://example.com:443/news/"), "https://example.com/news")
        self.assertEqual(canonicalize_url("http://example.com:80/"), "http://example.com/")
        self.assertEqual(canonicalize_url("http://example.com:8080/a"), "http://example.com:8080/a")
        self.assertEqual(canonicalize_url("http://example.com:443/a"), "http://example.com:443/a")

    def test_trailing_slash_only_on_non_root_paths(self):
        self.assertEqual(canonicalize_url("https://example.com/markets/aapl/"), "https://example.com/markets/aapl")
        self.assertEqual(canonicalize_url("https://example.com/"), "https://example.com/")
        self.assertEqual(canonicalize_url("https://example.com"), "https://example.com/")

    def test_canonicalize_is_idempotent(self):
        urls = [
            "https://Example.com/path/?utm_source=x&b=2&a=1#frag",
            "http://example.com:80/a//?q=hello world&fbclid=1",
            "https://example.com/?ref=home",
            "https://news.example.com:8443/x?k=&j=1",
        ]
        for u in urls:
            once = canonicalize_url(u)
            self.assertEqual(canonicalize_url(once), once, msg=u)

    def test_hash_is_stable_for_equivalent_urls(self):
        a = "https://example.com/a?utm_source=x&id=1&page=2"
        b = "https://EXAMPLE.com/a?page=2&UTM_Medium=y&id=1#top"
        self.assertEqual(url_hash(canonicalize_url(a)), url_hash(canonicalize_url(b)))

    def test_hash_shape_and_distinctness(self):
        h = url_hash("https://example.com/a")
        self.assertEqual(len(h), 64)
        int(h, 16)
        self.assertEqual(h, url_hash("https://example.com/a"))
        self.assertNotEqual(h, url_hash("https://example.com/b"))

    def test_canonical_identity(self):
        canon, h = canonical_identity("https://example.com/a/?utm_source=x")
        self.assertEqual(canon, "https://example.com/a")
        self.assertEqual(h, url_hash(canon))

    def test_invalid_urls_raise(self):
        for bad in ("", "   ", "not a url", "/relative/path", "mailto:someone@example.com", "https://example.com:99999/"):
            with self.assertRaises(InvalidUrlError, msg=bad):
                canonicalize_url(bad)

    def test_invalid_url_error_is_value_error(self):
        with self.assertRaises(ValueError):
            canonicalize_url("nope")


if __name__ == "__main__":
    unittest.main()
