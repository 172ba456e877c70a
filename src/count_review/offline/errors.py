from __future__ import annotations

from typing import Optional


class CountReviewError(Exception):
    """Base class for errors raised by the offline layer."""


class HttpStatusError(CountReviewError):
    """The server answered with a non-2xx status."""

    def __init__(self, *, status: int, url: str, body: str = "") -> None:
        self.status = status
        self.url = url
        self.body = body
        detail = f" {body.strip()}" if body and body.strip() else ""
        super().__init__(f"HTTP {status} for {url}{detail}")


class InvalidResponseError(CountReviewError):
    """The server answered 2xx but the body could not be decoded."""

    def __init__(self, *, url: str, reason: Optional[str] = None) -> None:
        self.url = url
        super().__init__(f"Invalid response body from {url}: {reason or 'unparseable'}")
