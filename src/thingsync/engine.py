"""High-level async engine wiring registry, reconciler and command executor."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

import aiohttp

from thingsync._transport import CommandTransport, DeviceDirectory, RestBackend, SnapshotSource
from thingsync.config import EngineConfig
from thingsync.control.cascade import GroupCascade
from thingsync.control.executor import CommandExecutor
from thingsync.ingestion.reconcile import ReconcileResult, Reconciler
from thingsync.models.command import CommandResult, DesiredState
from thingsync.models.snapshot import LightColor, Power
from thingsync.models.target import Target, make_target
from thingsync.state.registry import Registry
from thingsync.state.thing import Thing, ThingView

_logger = logging.getLogger(__name__)


class Engine:
    """Reconciles smart-lighting Things across the public and private sources.

    Usage::

        async with aiohttp.ClientSession() as http:
            async with Engine.over_http(EngineConfig.from_env(), http) as engine:
                await engine.init("d1")
                await engine.set_power("d1", "on")
                print(engine.view("d1"))
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        public: SnapshotSource,
        private: SnapshotSource,
        transport: CommandTransport,
        directory: DeviceDirectory,
        registry: Registry | None = None,
        on_change: Callable[[ThingView], None] | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self.registry = registry if registry is not None else Registry()
        self._on_change = on_change
        self._background: set[asyncio.Task[Any]] = set()
        self.reconciler = Reconciler(
            self.registry,
            public=public,
            private=private,
            directory=directory,
            config=self._config,
            on_update=self._notify,
            on_discover=self._on_discover,
        )
        self.executor = CommandExecutor(self.registry, self.reconciler, transport, self._config)
        self.cascade = GroupCascade(self.registry, self.reconciler, self.executor.track)
        self.executor.set_settle_hook(self._after_command)

    @classmethod
    def over_http(
        cls,
        config: EngineConfig,
        http_session: aiohttp.ClientSession,
        **kwargs: Any,
    ) -> Engine:
        """Build an engine whose collaborators are the REST endpoints at ``config.base_url``."""
        backend = RestBackend(config, http_session)
        return cls(
            config,
            public=backend.public,
            private=backend.private,
            transport=backend,
            directory=backend,
            **kwargs,
        )

    @property
    def config(self) -> EngineConfig:
        return self._config

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> Engine:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Cancel background reconciliations and pending expectations."""
        tasks: list[asyncio.Task[Any]] = list(self._background)
        for thing in self.registry.all():
            pending = thing.pending_expectation
            if pending is not None and pending.task is not None:
                tasks.append(pending.task)
            self.executor.cancel(thing.oid)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()

    # ------------------------------------------------------------------
    # Presentation-facing API
    # ------------------------------------------------------------------

    async def init(self, oid: str, is_group: bool = False) -> ThingView:
        """Register *oid* (or re-initialise it) and run its first reconciliation."""
        target = make_target(oid, is_group=is_group)
        thing = self.registry.get(target.oid)
        if thing is None or thing.target != target:
            # A kind change must not leave the old loop polling the new entry.
            self.executor.forget(target.oid)
            thing = self.registry.upsert(Thing(target=target))
        else:
            thing.reinit()
        self._notify(thing)
        await self.reconciler.reconcile(target.oid)
        # Removed while initialising: report the last state we held.
        current = self.registry.get(target.oid) or thing
        return current.view()

    async def refresh(self, oid: str | None = None) -> list[ReconcileResult]:
        """Reconcile one Thing, or every tracked Thing when *oid* is None."""
        oids = [oid] if oid is not None else [thing.oid for thing in self.registry.all()]
        return list(await asyncio.gather(*(self.reconciler.reconcile(item) for item in oids)))

    async def issue_command(self, oid: str, desired: DesiredState) -> CommandResult:
        """Send *desired* and wait until the Thing converges or the attempts run out."""
        return await self.executor.issue_command(oid, desired)

    async def set_power(self, oid: str, power: Power | str | bool) -> CommandResult:
        return await self.issue_command(oid, DesiredState(power=Power.coerce(power)))

    async def set_color(self, oid: str, color: LightColor | str) -> CommandResult:
        if isinstance(color, str):
            color = LightColor.parse(color)
        return await self.issue_command(oid, DesiredState(color=color))

    async def set_kelvin(self, oid: str, kelvin: int) -> CommandResult:
        return await self.issue_command(oid, DesiredState(color=LightColor(kelvin=kelvin)))

    def view(self, oid: str) -> ThingView | None:
        """Current projection of *oid*; ``None`` when it is not tracked."""
        thing = self.registry.get(oid)
        return thing.view() if thing is not None else None

    def views(self) -> list[ThingView]:
        return [thing.view() for thing in self.registry.all()]

    def remove(self, oid: str) -> bool:
        """Stop tracking *oid* (e.g. the device was unpaired)."""
        self.executor.forget(oid)
        return self.registry.remove(oid) is not None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _on_discover(self, group_oid: str) -> None:
        self._spawn(self.reconciler.reconcile(group_oid))

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _after_command(self, target: Target, desired: DesiredState, result: CommandResult) -> None:
        if target.is_group:
            await self.cascade.refresh_members(target.oid, desired)
            return
        if not self._config.refresh_parent_group:
            return
        thing = self.registry.get(target.oid)
        group_oid = thing.group_name if thing is not None else None
        if group_oid is not None and group_oid in self.registry:
            await self.reconciler.reconcile(group_oid)

    def _notify(self, thing: Thing) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(thing.view())
        except Exception:
            _logger.debug("on_change callback failed", exc_info=True)
