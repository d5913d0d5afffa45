"""Shared fixtures: a scriptable fake Metabase and captured logs."""

from __future__ import annotations

import asyncio
from typing import Iterator

import pytest

from metabase_mcp.foundation.errors import ErrorCode, JsonDict, UpstreamError
from metabase_mcp.resources import ListType, ResourceStore, ResourceType
from metabase_mcp.runtime.observability import CaptureRenderer, configure_logging


class FakeUpstream:
    """In-memory stand-in for the Metabase loaders.

    Records every load, the peak number of loads in flight, and the size of
    each group of overlapping loads (one group per wave).
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []
        self.failing: dict[int, Exception] = {}
        self.active = 0
        self.peak = 0
        self.waves: list[int] = []
        self.version = 1

    def fail(self, *ids: int, status: int = 500) -> None:
        code = {404: ErrorCode.NOT_FOUND, 403: ErrorCode.PERMISSION_DENIED}.get(status, ErrorCode.EXTERNAL_SERVICE_ERROR)
        for i in ids:
            self.failing[i] = UpstreamError(f"item {i} failed with {status}", code=code, http_status=status)

    def heal(self) -> None:
        self.failing.clear()

    def count(self, item_id: int) -> int:
        return sum(1 for _, i in self.calls if i == item_id)

    def loader(self, resource_type: ResourceType):
        async def load(item_id: int) -> JsonDict:
            self.calls.append((resource_type.value, item_id))
            if self.active == 0:
                self.waves.append(0)
            self.waves[-1] += 1
            self.active += 1
            self.peak = max(self.peak, self.active)
            try:
                await asyncio.sleep(0)
                if item_id in self.failing:
                    raise self.failing[item_id]
                return {"id": item_id, "type": resource_type.value, "version": self.version}
            finally:
                self.active -= 1
        return load

    def list_loader(self, list_type: ListType):
        async def load(key: str) -> list[JsonDict]:
            self.calls.append((f"{list_type}-list", key))
            await asyncio.sleep(0)
            if -1 in self.failing:
                raise self.failing[-1]
            return [{"id": 1, "kind": list_type.value}, {"id": 2, "kind": list_type.value}]
        return load


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def store(upstream: FakeUpstream) -> ResourceStore:
    return ResourceStore(upstream.loader, upstream.list_loader, ttl_ms=60_000)


@pytest.fixture
def captured() -> Iterator[CaptureRenderer]:
    """Route all log output into memory for the duration of a test."""
    renderer = CaptureRenderer()
    configure_logging(level="DEBUG", renderer=renderer)
    yield renderer
    configure_logging("none")
