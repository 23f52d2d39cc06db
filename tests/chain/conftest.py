"""Fake aiohttp session for chain client tests."""

from __future__ import annotations

from typing import Any

import pytest


class FakeResponse:
    def __init__(
        self,
        status: int = 200,
        body: Any = None,
        text: str = "",
        json_error: Exception | None = None,
    ) -> None:
        self.status = status
        self._body = body if body is not None else {}
        self._text = text
        self._json_error = json_error

    async def json(self) -> Any:
        if self._json_error is not None:
            raise self._json_error
        return self._body

    async def text(self) -> str:
        return self._text

    async def __aenter__(self) -> FakeResponse:
        return self

    async def __aexit__(self, *exc: object) -> None:
        return None


class _RaisingContext:
    def __init__(self, error: BaseException) -> None:
        self._error = error

    async def __aenter__(self) -> None:
        raise self._error

    async def __aexit__(self, *exc: object) -> None:
        return None


class FakeSession:
    """Records requests and replays queued responses or errors."""

    def __init__(self, *responses: FakeResponse | BaseException) -> None:
        self._responses = list(responses)
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.closed = False

    def _next(self, method: str, url: str, kwargs: dict[str, Any]) -> Any:
        self.calls.append((method, url, kwargs))
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            return _RaisingContext(item)
        return item

    def post(self, url: str, **kwargs: Any) -> Any:
        return self._next("POST", url, kwargs)

    def get(self, url: str, **kwargs: Any) -> Any:
        return self._next("GET", url, kwargs)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_session():
    return FakeSession


@pytest.fixture
def make_response():
    return FakeResponse
