"""Shared fixtures for transport tests."""

import asyncio
from typing import AsyncIterator, Iterable, List, Union

import pytest

from aiu_transport.core.clock import FakeClock


class BlockingClock(FakeClock):
    """Fake clock whose sleep never returns unless cancelled."""

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.Event().wait()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def blocking_clock() -> BlockingClock:
    return BlockingClock()


async def iter_chunks(chunks: Iterable[Union[bytes, str]]) -> AsyncIterator[Union[bytes, str]]:
    """Async byte source yielding the given chunks in order."""
    for chunk in chunks:
        yield chunk


async def collect(stream) -> List:
    return [item async for item in stream]
