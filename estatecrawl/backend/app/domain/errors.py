# app/domain/errors.py
from __future__ import annotations

import httpx


class CrawlError(Exception):
    """Base for every error raised by the crawl engine."""


class ConfigError(CrawlError):
    """Unknown adapter, missing base URL. Fatal for the run, never retried."""


class FetchError(CrawlError):
    def __init__(self, message: str, *, url: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class TransientFetchError(FetchError):
    """Timeout, connection reset or HTTP 429."""


class ParseError(CrawlError):
    """Adapter could not derive mandatory fields (notably external_id)."""


class StoreError(CrawlError):
    """Persistent store rejected an upsert."""


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, TransientFetchError):
        return True
    if isinstance(exc, FetchError):
        return exc.status == 429
    # raw httpx errors that escaped an adapter's own fetch path
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code == 429
    return False
