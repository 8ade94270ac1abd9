"""URL canonicalization helpers for ingestion/dedup."""

from __future__ import annotations

import hashlib
from typing import Iterable, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from newsimpact.errors import InvalidUrlError


TRACKING_QUERY_PARAMS = frozenset(
    {
        # ad/click ids
        "fbclid",
        "gclid",
        "igshid",
        "yclid",
        "ved",
        # mailchimp / marketo
        "mc_cid",
        "mc_eid",
        "mkt_tok",
        # share/referral
        "ref",
        "ref_src",
        "si",
        "spm",
        "sr_share",
    }
)

DEFAULT_PORTS = {"http": 80, "https": 443}


def is_tracking_param(key: str, *, extra: Optional[Iterable[str]] = None) -> bool:
    k = (key or "").lower()
    if k.startswith("utm_"):
        return True
    if k in TRACKING_QUERY_PARAMS:
        return True
    return bool(extra) and k in {e.lower() for e in extra}


def canonicalize_url(url: str, *, strip_params: Optional[Iterable[str]] = None) -> str:
    """Canonicalize an article URL for dedup.

    - Lowercase scheme + hostname, drop the fragment
    - Strip tracking query parameters (known keys and any ``utm_*``)
    - Sort remaining query params by key (stable)
    - Drop default ports and trailing slashes on non-root paths

    Raises InvalidUrlError if the URL has no scheme or host.
    """
    raw = (url or "").strip()
    if not raw:
        raise InvalidUrlError("invalid URL: empty")
    try:
        p = urlsplit(raw)
        port = p.port
    except ValueError as e:
        raise InvalidUrlError(f"invalid URL: {raw!r} ({e})") from e
    scheme = (p.scheme or "").lower()
    host = (p.hostname or "").lower()
    if not scheme or not host:
        raise InvalidUrlError(f"invalid URL: {raw!r}")

    if ":" in host:
        host = f"[{host}]"
    netloc = host
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"
    if p.username:
        userinfo = p.username + (f":{p.password}" if p.password is not None else "")
        netloc = f"{userinfo}@{netloc}"

    path = p.path or "/"
    if len(path) > 1:
        path = path.rstrip("/") or "/"

    kept = [
        (k, v)
        for k, v in parse_qsl(p.query, keep_blank_values=True)
        if not is_tracking_param(k, extra=strip_params)
    ]
    kept.sort(key=lambda kv: kv[0])
    query = urlencode(kept)

    return urlunsplit((scheme, netloc, path, query, ""))


def url_hash(canonical_url: str) -> str:
    """Stable 64-hex identity for an already-canonical URL."""
    return hashlib.sha256(canonical_url.encode("utf-8")).hexdigest()


def canonical_identity(url: str) -> Tuple[str, str]:
    canon = canonicalize_url(url)
    return canon, url_hash(canon)
