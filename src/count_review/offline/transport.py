from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import aiohttp

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (aiohttp.ClientConnectionError, asyncio.TimeoutError)


def is_transport_error(exc: BaseException) -> bool:
    """True when the request never reached the server or never came back."""
    return isinstance(exc, TRANSPORT_ERRORS)


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int
    text: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    # Set when the status arrived but the body could not be read in full.
    body_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        return json.loads(self.text)


def _decode_body(raw: bytes, charset: Optional[str]) -> str:
    try:
        return raw.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


class HttpTransport:
    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> HttpResponse:
        """
        Send one request and return the full response.

        Raises one of TRANSPORT_ERRORS when the server cannot be reached.
        Any HTTP status, including 4xx/5xx, is returned rather than raised.
        """
        raise NotImplementedError


class AiohttpTransport(HttpTransport):
    def __init__(self, *, base_url: str, request_timeout_seconds: Optional[float] = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=request_timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> AiohttpTransport:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        if self._session and not self._session.closed:
            return
        self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def stop(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    def _absolute(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return f"{self._base_url}/{url.lstrip('/')}"

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> HttpResponse:
        await self.start()
        assert self._session is not None
        target = self._absolute(url)
        extra: dict[str, Any] = {}
        if timeout_seconds is not None:
            extra["timeout"] = aiohttp.ClientTimeout(total=timeout_seconds)
        logger.debug("http.request method=%s url=%s", method, target)
        async with self._session.request(
            method,
            target,
            headers=dict(headers or {}),
            data=body.encode("utf-8") if body is not None else None,
            **extra,
        ) as response:
            body_error: Optional[str] = None
            try:
                raw = await response.read()
            except (aiohttp.ClientPayloadError, aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
                # The status line already arrived, so the server was reached.
                logger.warning(
                    "http.body_incomplete method=%s url=%s status=%d error=%s",
                    method,
                    target,
                    response.status,
                    e,
                )
                raw = b""
                body_error = f"incomplete body: {e}"
            logger.debug("http.response method=%s url=%s status=%d", method, target, response.status)
            return HttpResponse(
                status=response.status,
                text=_decode_body(raw, response.charset),
                headers=dict(response.headers),
                body_error=body_error,
            )
