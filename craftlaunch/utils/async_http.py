"""Async HTTP client utilities."""

import asyncio
import json
import aiohttp
from typing import Optional, Dict, Any

from ..errors import NetworkError, NotFoundError
from .retry import RetryPolicy


class AsyncHTTPClient:
    """Reusable async HTTP client for catalog and metadata documents."""

    def __init__(self, headers: Optional[Dict[str, str]] = None,
                 timeout: Optional[aiohttp.ClientTimeout] = None,
                 retry: RetryPolicy = RetryPolicy.CATALOG):
        self.default_headers = headers or {}
        self.timeout = timeout or aiohttp.ClientTimeout(sock_connect=10, sock_read=30)
        self.retry = retry
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(headers=self.default_headers, timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.session.close()

    async def _get_text_once(self, url: str, headers: Optional[Dict[str, str]] = None) -> str:
        try:
            async with self.session.get(url, headers=headers) as resp:
                if resp.status == 404:
                    raise NotFoundError(f"Not found: {url}")
                if resp.status >= 400:
                    raise NetworkError(f"Failed to fetch {url} ({resp.status})", url, resp.status)
                return await resp.text()
        except aiohttp.TooManyRedirects as e:
            raise NetworkError(f"Too many redirects for {url}", url) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Failed to fetch {url}: {e}", url) from e

    async def get_text(self, url: str, headers: Optional[Dict[str, str]] = None) -> str:
        """GET a text document, retried per the client's policy."""
        return await self.retry.run(lambda: self._get_text_once(url, headers), f"GET {url}")

    async def get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        """GET a JSON document."""
        text = await self.get_text(url, headers)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise NetworkError(f"Invalid JSON from {url}: {e}", url) from e
