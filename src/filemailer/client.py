# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Python client for the filemailer HTTP service.

The chat bot uses it to submit URLs on behalf of registered users.

Example:
    Submitting a URL::

        client = FilemailerClient("http://http-service:8080")
        result = await client.send(api_key, "https://example.com/report.pdf")
        # {'ok': True, 'stage': 'sent', 'message': 'file sent to your email', 'size': 1048576}
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import aiohttp


class ServiceError(RuntimeError):
    """Non-200 reply or transport failure while talking to the service.

    Attributes:
        status: HTTP status, ``None`` when the service was unreachable.
        message: Server supplied message or transport error text.
        stage: Stage tag from the error body, when present.
    """

    def __init__(self, status: Optional[int], message: str, stage: Optional[str] = None):
        super().__init__(f"{status}: {message}" if status is not None else message)
        self.status = status
        self.message = message
        self.stage = stage


class FilemailerClient:
    """Async client for ``POST /send`` and ``GET /health``.

    Attributes:
        url: Base URL of the HTTP service.
    """

    def __init__(self, url: str = "http://http-service:8080", timeout: Optional[float] = None):
        """Initialize the client.

        Args:
            url: Base URL of the HTTP service.
            timeout: Total request timeout in seconds, ``None`` waits as long
                as the delivery takes.
        """
        self.url = url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def send(self, api_key: str, file_url: str) -> Dict[str, Any]:
        """Ask the service to deliver ``file_url`` to the owner of ``api_key``.

        Raises:
            ServiceError: On any non-200 reply or transport failure.
        """
        payload = {"api_key": api_key, "file_url": file_url}
        try:
            async with aiohttp.ClientSession(timeout=self._timeout) as session:
                async with session.post(f"{self.url}/send", json=payload) as resp:
                    data = await self._read(resp)
                    if resp.status != 200:
                        raise ServiceError(resp.status, data.get("message") or resp.reason or "request failed", data.get("stage"))
                    return data
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise ServiceError(None, str(exc) or exc.__class__.__name__) from exc

    async def health(self) -> bool:
        """Return True when ``/health`` answers 200."""
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10)) as session:
                async with session.get(f"{self.url}/health") as resp:
                    return resp.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError):
            return False

    @staticmethod
    async def _read(resp: aiohttp.ClientResponse) -> Dict[str, Any]:
        try:
            data = await resp.json(content_type=None)
        except ValueError:
            return {"message": (await resp.text()).strip()}
        return data if isinstance(data, dict) else {}

    def __repr__(self) -> str:
        return f"FilemailerClient(url='{self.url}')"
