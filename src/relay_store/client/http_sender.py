"""
HTTP sender: one POST of a serialized batch per call.

Attaches the static API credential to every attempt and never raises;
transport failures come back as ``SendResult(status_code=None, error=...)``.
"""

from __future__ import annotations

from typing import Optional

import httpx
from loguru import logger

from ..buffer.types import SendResult
from ..errors import map_http_error


class HttpSender:
    """Synchronous httpx-based sender for the delivery cycle.

    Example:
        with HttpSender("https://api.example.com/ingest", api_key="secret") as sender:
            cycle = DeliveryCycle(buffer, sender)
            cycle.run_once()
    """

    def __init__(
        self,
        url: str,
        api_key: str = "",
        *,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
            headers["apikey"] = api_key
        self._client = httpx.Client(headers=headers, timeout=timeout, transport=transport)

    def __call__(self, body: bytes) -> SendResult:
        return self.send(body)

    def send(self, body: bytes) -> SendResult:
        try:
            resp = self._client.post(self.url, content=body)
        except httpx.HTTPError as exc:
            err = map_http_error(exc)
            logger.debug(f"POST {self.url} failed: {err}")
            return SendResult(status_code=None, error=err)
        return SendResult(status_code=resp.status_code, body=resp.content)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpSender":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
