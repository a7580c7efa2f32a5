from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

import pytest

from thingsync.config import EngineConfig
from thingsync.engine import Engine
from thingsync.exceptions import FetchFailure
from thingsync.models.command import CommandRequest
from thingsync.models.snapshot import SourceSnapshot
from thingsync.models.target import Source


def light(
    light_id: str,
    label: str,
    *,
    power: str = "off",
    group: str | None = None,
    connected: bool = True,
    kelvin: int = 3500,
) -> dict[str, Any]:
    """A LIFX-shaped light payload as both sources report it."""
    payload: dict[str, Any] = {
        "id": light_id,
        "label": label,
        "power": power,
        "brightness": 1.0,
        "color": {"hue": 0.0, "saturation": 0.0, "kelvin": kelvin},
        "connected": connected,
        "product": {"capabilities": {"has_color": True, "min_kelvin": 2500, "max_kelvin": 9000}},
    }
    if group is not None:
        payload["group"] = {"id": f"gid-{group}", "name": group}
    return payload


@dataclass
class _Scheduled:
    light_id: str
    changes: dict[str, Any]
    remaining: int


@dataclass
class FakeSource:
    source: Source
    lights: dict[str, dict[str, Any]] = field(default_factory=dict)
    fail: bool = False
    delay: float = 0.0
    calls: int = 0
    _scheduled: list[_Scheduled] = field(default_factory=list)

    def add(self, payload: dict[str, Any]) -> None:
        self.lights[payload["id"]] = dict(payload)

    def schedule(self, light_id: str, *, after: int, **changes: Any) -> None:
        """Apply *changes* to a light on the *after*-th fetch from now."""
        self._scheduled.append(_Scheduled(light_id=light_id, changes=changes, remaining=after))

    def set(self, light_id: str, **changes: Any) -> None:
        self.lights[light_id].update(changes)

    async def fetch_snapshots(self) -> list[SourceSnapshot]:
        self.calls += 1
        for item in list(self._scheduled):
            item.remaining -= 1
            if item.remaining <= 0:
                self.set(item.light_id, **item.changes)
                self._scheduled.remove(item)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise FetchFailure(f"{self.source.value} source unreachable", source=self.source.value)
        return [SourceSnapshot.model_validate(payload) for payload in self.lights.values()]


@dataclass
class FakeDirectory:
    names: dict[str, str] = field(default_factory=dict)
    calls: int = 0

    async def device_name(self, oid: str) -> str | None:
        self.calls += 1
        return self.names.get(oid)


@dataclass
class FakeTransport:
    accept: bool = True
    error: Exception | None = None
    requests: list[CommandRequest] = field(default_factory=list)
    sources: tuple[FakeSource, ...] = ()
    apply_immediately: bool = False

    async def send_command(self, request: CommandRequest) -> bool:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.accept and self.apply_immediately and request.desired.power is not None:
            # Devices react instantly: every light addressed by the command flips.
            selectors = set(request.selectors.values())
            for source in self.sources:
                for payload in source.lights.values():
                    group = payload.get("group") or {}
                    if f"id:{payload['id']}" in selectors or f"group_id:{group.get('id')}" in selectors:
                        payload["power"] = request.desired.power.value
        return self.accept


@dataclass
class FakeBackend:
    public: FakeSource = field(default_factory=lambda: FakeSource(Source.PUBLIC))
    private: FakeSource = field(default_factory=lambda: FakeSource(Source.PRIVATE))
    directory: FakeDirectory = field(default_factory=FakeDirectory)
    transport: FakeTransport = field(default_factory=FakeTransport)

    def __post_init__(self) -> None:
        self.transport.sources = (self.public, self.private)

    def add_everywhere(self, oid: str, payload: dict[str, Any]) -> None:
        self.directory.names[oid] = payload["label"]
        self.public.add(payload)
        self.private.add(payload)

    def engine(self, **config: Any) -> Engine:
        settings: dict[str, Any] = {"device_retry_delay": 0.0, "group_retry_delay": 0.0, "fetch_timeout": 1.0}
        settings.update(config)
        return Engine(
            EngineConfig(**settings),
            public=self.public,
            private=self.private,
            transport=self.transport,
            directory=self.directory,
        )


def spy_reconcile(engine: Engine) -> Counter[str]:
    """Count reconcile calls per oid from here on."""
    calls: Counter[str] = Counter()
    original = engine.reconciler.reconcile

    async def _spy(oid: str) -> Any:
        calls[oid] += 1
        return await original(oid)

    engine.reconciler.reconcile = _spy  # type: ignore[method-assign]
    return calls


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()
