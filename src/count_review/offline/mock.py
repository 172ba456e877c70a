from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

import aiohttp

from count_review.offline.transport import HttpResponse, HttpTransport

Outcome = Union[HttpResponse, BaseException]


def json_response(status: int, payload: Any) -> HttpResponse:
    return HttpResponse(status=status, text=json.dumps(payload), headers={"Content-Type": "application/json"})


@dataclass(frozen=True, slots=True)
class SentRequest:
    method: str
    url: str
    headers: Dict[str, str]
    body: Optional[str]


class ScriptedTransport(HttpTransport):
    """
    An in-process server for exercising the offline layer.

    Each (method, url) route answers with its scripted outcomes in order and
    keeps repeating the last one. While `offline` is set every request fails
    with a connection error before reaching the route. Only requests that
    reach a route are recorded in `sent`.
    """

    def __init__(self) -> None:
        self.offline = False
        self.gate: Optional[asyncio.Event] = None
        self.sent: list[SentRequest] = []
        self.attempts = 0
        self._routes: Dict[tuple[str, str], list[Outcome]] = {}

    def route(self, method: str, url: str, *outcomes: Outcome) -> None:
        self._routes[(method.upper(), url)] = list(outcomes)

    def sent_to(self, url: str) -> list[SentRequest]:
        return [request for request in self.sent if request.url == url]

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        body: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> HttpResponse:
        self.attempts += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.offline:
            raise aiohttp.ClientConnectionError(f"Cannot connect to host for {url}")

        outcomes = self._routes.get((method.upper(), url))
        if not outcomes:
            outcome: Outcome = HttpResponse(status=404, text="Not found")
        elif len(outcomes) > 1:
            outcome = outcomes.pop(0)
        else:
            outcome = outcomes[0]

        if isinstance(outcome, aiohttp.ClientConnectionError):
            raise outcome
        self.sent.append(SentRequest(method=method.upper(), url=url, headers=dict(headers or {}), body=body))
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: int = 0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now
