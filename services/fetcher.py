"""HTTP retrieval of tracker targets, optionally through a relay proxy."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional
from urllib.parse import quote

import aiohttp

from services.errors import FetchError

logger = logging.getLogger(__name__)


class Fetcher:
    """Fetches raw response text for tracker URLs."""

    def __init__(
        self,
        timeout: float,
        proxy_url: str = "",
        headers: Optional[dict[str, str]] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.timeout = timeout
        self.proxy_url = (proxy_url or "").strip()
        self.headers = dict(headers or {})
        self.session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self.session is None:
            connector = aiohttp.TCPConnector(limit_per_host=5, limit=20)
            self.session = aiohttp.ClientSession(
                headers=self.headers,
                connector=connector,
            )
        return self.session

    async def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self.session is not None:
            await self.session.close()
            self.session = None

    def resolve_url(self, url: str) -> str:
        """Route ``url`` through the configured relay, or return it unchanged."""
        if not self.proxy_url:
            return url
        encoded = quote(url, safe="")
        if "{url}" in self.proxy_url:
            return self.proxy_url.replace("{url}", encoded)
        return f"{self.proxy_url}{encoded}"

    async def fetch(self, url: str, request_body: Optional[str] = None) -> str:
        """Return the response body as text.

        A non-empty ``request_body`` is sent as a JSON POST, otherwise a GET is
        issued. Raises FetchError on timeouts, connection failures and non-2xx
        responses; retrying is left to the next scheduler tick.
        """
        session = await self._get_session()
        target = self.resolve_url(url)
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        if request_body and request_body.strip():
            method = "POST"
            kwargs = {
                "data": request_body.encode("utf-8"),
                "headers": {"Content-Type": "application/json"},
            }
        else:
            method = "GET"
            kwargs = {}

        logger.debug("%s %s (via %s)", method, url, target)
        try:
            async with session.request(method, target, timeout=timeout, **kwargs) as response:
                if not 200 <= response.status < 300:
                    raise FetchError(url, response.reason or "unexpected status", status=response.status)
                return await response.text(errors="replace")
        except asyncio.TimeoutError as exc:
            logger.warning("Timeout fetching %s after %.1fs", url, self.timeout)
            raise FetchError(url, f"timed out after {self.timeout:g}s") from exc
        except aiohttp.ClientConnectionError as exc:
            logger.warning("Connection error fetching %s: %s", url, exc)
            logger.debug("Connection error details", exc_info=True)
            raise FetchError(url, str(exc) or exc.__class__.__name__) from exc
        except aiohttp.ClientResponseError as exc:
            raise FetchError(url, exc.message, status=exc.status) from exc
        except aiohttp.ClientError as exc:
            logger.warning("Error fetching %s: %s", url, exc)
            logger.debug("Unhandled request exception", exc_info=True)
            raise FetchError(url, str(exc) or exc.__class__.__name__) from exc


__all__ = ["Fetcher"]
