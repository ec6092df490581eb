from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

import pytest

from fetchkit import FetchRequest, FetchResponse


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class RecordedSleep:
    def __init__(self, clock: FakeClock | None = None) -> None:
        self.calls: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds * 1000)


class Downstream:
    """
    Scripted stand-in for the rest of a pipeline.

    Each outcome is a status code, a `FetchResponse`, or an exception to raise.
    The last outcome repeats once the script runs out.
    """

    def __init__(self, outcomes: Iterable[int | FetchResponse | BaseException]) -> None:
        self._outcomes = list(outcomes)
        self.requests: list[FetchRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def __call__(self, req: FetchRequest) -> FetchResponse:
        self.requests.append(req)
        index = min(len(self.requests), len(self._outcomes)) - 1
        outcome = self._outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, FetchResponse):
            return outcome
        return FetchResponse(status=outcome, status_text=f"status {outcome}", url=req.url)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1_000.0)


@pytest.fixture
def sleep() -> RecordedSleep:
    return RecordedSleep()


@pytest.fixture
def make_request() -> Callable[..., FetchRequest]:
    def _make(
        url: str = "https://api.example.com/items", method: str = "GET", **kw: Any
    ) -> FetchRequest:
        return FetchRequest(method=method, url=url, **kw)

    return _make


@pytest.fixture
def downstream() -> Callable[[Iterable[int | FetchResponse | BaseException]], Downstream]:
    return Downstream
