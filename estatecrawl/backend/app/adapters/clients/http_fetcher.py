# app/adapters/clients/http_fetcher.py
from __future__ import annotations

import logging
import re
import ssl
from dataclasses import dataclass, field
from urllib.parse import urlsplit

import certifi
import httpx

from ...config import Settings, settings as default_settings
from ...domain.errors import FetchError, TransientFetchError
from ...domain.urls import origin_of

log = logging.getLogger(__name__)

BROWSER_HEADERS: dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Upgrade-Insecure-Requests": "1",
    # fetch metadata / client hints are often checked by WAFs
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Sec-CH-UA": '"Not.A/Brand";v="8", "Chromium";v="127", "Google Chrome";v="127"',
    "Sec-CH-UA-Mobile": "?0",
    "Sec-CH-UA-Platform": '"macOS"',
}

# direct-fetch failures that justify trying the proxy
_PROXY_FALLBACK_STATUSES = (401, 403, 429)


@dataclass(frozen=True)
class ProxyRule:
    """Route requests for hosts matching host_pattern through an authenticated proxy."""

    host_pattern: str
    proxy_url: str
    auth_token: str
    force: bool = False

    def matches(self, url: str) -> bool:
        host = (urlsplit(url).hostname or "").lower()
        return re.search(self.host_pattern, host, re.IGNORECASE) is not None


@dataclass(frozen=True)
class FetcherConfig:
    headers: dict[str, str] = field(default_factory=lambda: dict(BROWSER_HEADERS))
    timeout_s: float = 30.0
    verify: bool | ssl.SSLContext = True
    proxy_rules: tuple[ProxyRule, ...] = ()

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> "FetcherConfig":
        s = s or default_settings
        headers = dict(BROWSER_HEADERS)
        headers["User-Agent"] = s.HTTP_USER_AGENT
        headers["Accept-Language"] = s.HTTP_ACCEPT_LANGUAGE

        verify: bool | ssl.SSLContext
        if not s.HTTP_VERIFY_SSL:
            verify = False
        else:
            # explicit CA bundle path wins; else certifi
            verify = ssl.create_default_context(cafile=s.HTTP_CA_BUNDLE or certifi.where())

        rules: list[ProxyRule] = []
        if s.PRIMELOCATION_PROXY_URL and s.PROXY_AUTH_TOKEN:
            rules.append(
                ProxyRule(
                    host_pattern=r"(^|\.)primelocation\.com$",
                    proxy_url=s.PRIMELOCATION_PROXY_URL,
                    auth_token=s.PROXY_AUTH_TOKEN,
                    force=s.PRIMELOCATION_FORCE_PROXY,
                )
            )

        return cls(headers=headers, timeout_s=float(s.HTTP_TIMEOUT_S), verify=verify, proxy_rules=tuple(rules))


class HttpFetcher:
    """
    GET-only text fetcher with browser-like headers.

    HTTP 200-399 is success. Failures raise FetchError carrying the status;
    timeouts, connection failures and 429 raise TransientFetchError.
    """

    def __init__(self, config: FetcherConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        self._transport = transport

    def _client(self, timeout_s: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            follow_redirects=True,
            headers=self.config.headers,
            verify=self.config.verify,
            transport=self._transport,
        )

    def _proxy_rule(self, url: str) -> ProxyRule | None:
        for rule in self.config.proxy_rules:
            if rule.matches(url):
                return rule
        return None

    async def _get(self, url: str, *, timeout_s: float, headers: dict[str, str] | None = None, params=None) -> str:
        try:
            async with self._client(timeout_s) as client:
                resp = await client.get(url, headers=headers, params=params)
        except httpx.TimeoutException as e:
            raise TransientFetchError(f"timeout fetching {url}", url=url) from e
        except (httpx.NetworkError, httpx.RemoteProtocolError) as e:
            raise TransientFetchError(f"connection error fetching {url}: {e}", url=url) from e
        except httpx.HTTPError as e:
            raise FetchError(f"http error fetching {url}: {e}", url=url) from e

        status = resp.status_code
        if 200 <= status < 400:
            return resp.text
        if status == 429:
            raise TransientFetchError(f"rate limited (429) fetching {url}", url=url, status=status)
        raise FetchError(f"status {status} fetching {url}", url=url, status=status)

    async def _get_via_proxy(self, rule: ProxyRule, url: str, *, timeout_s: float, referer: str | None) -> str:
        headers = {"Authorization": f"Bearer {rule.auth_token}"}
        if referer:
            headers["Referer"] = referer
        return await self._get(rule.proxy_url, timeout_s=timeout_s, headers=headers, params={"url": url})

    async def get_text(self, url: str, timeout_ms: int | None = None) -> str:
        timeout_s = (timeout_ms / 1000.0) if timeout_ms else self.config.timeout_s
        referer = origin_of(url)
        rule = self._proxy_rule(url)

        if rule is not None and rule.force:
            log.info("forcing proxy for %s via %s", url, rule.proxy_url)
            return await self._get_via_proxy(rule, url, timeout_s=timeout_s, referer=referer)

        try:
            return await self._get(url, timeout_s=timeout_s, headers={"Referer": referer} if referer else None)
        except FetchError as e:
            if e.status:
                log.warning("direct fetch failed url=%s status=%s", url, e.status)
            else:
                log.warning("direct fetch error url=%s error=%s", url, e)

            if rule is None or (e.status is not None and e.status not in _PROXY_FALLBACK_STATUSES):
                raise

            log.info("proxy fallback engaged for %s", url)
            try:
                return await self._get_via_proxy(rule, url, timeout_s=timeout_s, referer=referer)
            except FetchError as proxy_err:
                log.warning("proxy fallback failed url=%s error=%s", url, proxy_err)
                raise e from proxy_err
