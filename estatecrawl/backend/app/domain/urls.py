# app/domain/urls.py
from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

TRACKING_PARAMS: set[str] = {
    "gclid",
    "fbclid",
    "igshid",
    "mc_cid",
    "mc_eid",
    "ref",
    "refid",
    "affid",
    "aff",
    "cmp",
    "campaign",
}

_DEFAULT_PORTS = {"http": 80, "https": 443}
_MULTI_SLASH = re.compile(r"/{2,}")


def _is_tracking(key: str) -> bool:
    k = key.lower()
    return k.startswith("utm_") or k in TRACKING_PARAMS


def _netloc(parts) -> str:
    host = (parts.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"  # ipv6 literal
    port = parts.port
    if port is not None and _DEFAULT_PORTS.get(parts.scheme) != port:
        host = f"{host}:{port}"
    if parts.username:
        auth = parts.username
        if parts.password:
            auth = f"{auth}:{parts.password}"
        host = f"{auth}@{host}"
    return host


def canonicalize_url(url: str) -> str:
    """
    Normalize a listing URL for dedup and lock keys.

    Lowercases the host, collapses duplicate slashes, strips a trailing slash
    (root excepted), drops the fragment and tracking params, sorts the rest by
    key. Anything that does not parse as an absolute URL comes back trimmed.
    """
    raw = str(url or "").strip()
    try:
        parts = urlsplit(raw)
        if not parts.scheme or not parts.netloc or not parts.hostname:
            return raw
        netloc = _netloc(parts)
    except ValueError:
        return raw

    path = _MULTI_SLASH.sub("/", parts.path) or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]

    kept = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not _is_tracking(k)]
    kept.sort(key=lambda kv: kv[0])

    return urlunsplit((parts.scheme, netloc, path, urlencode(kept), ""))


def absolute_url(href: str | None, base: str) -> str | None:
    """Resolve href against base; None for empty, fragment-only or javascript: links."""
    if not href:
        return None
    h = href.strip()
    if not h or h == "#" or h.lower().startswith("javascript:"):
        return None
    try:
        out = urljoin(base, h)
    except ValueError:
        return None
    return out if urlsplit(out).scheme in ("http", "https") else None


def origin_of(url: str) -> str | None:
    try:
        p = urlsplit(url)
    except ValueError:
        return None
    if not p.scheme or not p.netloc:
        return None
    return f"{p.scheme}://{p.netloc.lower()}"


def with_params(url: str, params: dict[str, str], *, keep: tuple[str, ...] = ()) -> str:
    """
    Set query params on url. Keys in `keep` are only added when the URL does
    not already carry them.
    """
    parts = urlsplit(url)
    q = dict(parse_qsl(parts.query, keep_blank_values=True))
    for k, v in params.items():
        if k in keep and q.get(k):
            continue
        q[k] = v
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(q), parts.fragment))
