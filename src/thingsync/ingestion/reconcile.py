"""Reconciliation: fetch both sources and merge them into the registry.

One pass runs the public and the private fetch concurrently.  Each source only
ever writes its own view field on the Thing, so the result does not depend on
which fetch returns first.  Fetch failures leave the view untouched and are
not retried here; the command executor and the caller own retries.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from thingsync._transport import DeviceDirectory, SnapshotSource
from thingsync.config import EngineConfig
from thingsync.exceptions import FetchFailure
from thingsync.models.snapshot import SourceSnapshot
from thingsync.models.target import Group, SnapshotPredicate, Source
from thingsync.state.policy import ThingStatus, fold_group
from thingsync.state.registry import Registry
from thingsync.state.thing import Thing

_logger = logging.getLogger(__name__)

_FETCH_ERRORS = (FetchFailure, OSError, TimeoutError)


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    """Summary of one reconciliation pass."""

    oid: str
    found: bool
    status: ThingStatus | None = None
    public_ok: bool = False
    private_ok: bool = False
    discovered_groups: tuple[str, ...] = ()


class Reconciler:
    """Merges fresh snapshots from both sources into registry entries."""

    def __init__(
        self,
        registry: Registry,
        *,
        public: SnapshotSource,
        private: SnapshotSource,
        directory: DeviceDirectory,
        config: EngineConfig,
        on_update: Callable[[Thing], None] | None = None,
        on_discover: Callable[[str], None] | None = None,
    ) -> None:
        self._registry = registry
        self._sources: dict[Source, SnapshotSource] = {Source.PUBLIC: public, Source.PRIVATE: private}
        self._directory = directory
        self._config = config
        self._on_update = on_update
        self._on_discover = on_discover

    async def reconcile(self, oid: str) -> ReconcileResult:
        """Run one reconciliation pass for the Thing registered under *oid*."""
        thing = self._registry.get(oid)
        if thing is None:
            _logger.debug("Reconcile requested for unknown thing %s", oid)
            return ReconcileResult(oid=oid, found=False)

        device_name: str | None = None
        if not thing.is_group:
            device_name = await self._resolve_device_name(thing)
            if device_name is None:
                return ReconcileResult(oid=oid, found=True, status=thing.status)

        predicate = thing.target.predicate(device_name)
        (public_ok, public_groups), (private_ok, private_groups) = await asyncio.gather(
            self._source_pass(oid, Source.PUBLIC, predicate),
            self._source_pass(oid, Source.PRIVATE, predicate),
        )

        current = self._registry.get(oid)
        discovered = tuple(dict.fromkeys(public_groups + private_groups))
        return ReconcileResult(
            oid=oid,
            found=current is not None,
            status=current.status if current is not None else None,
            public_ok=public_ok,
            private_ok=private_ok,
            discovered_groups=discovered,
        )

    async def _resolve_device_name(self, thing: Thing) -> str | None:
        """Resolve the device label once; later passes reuse the cached name."""
        if thing.device_name:
            return thing.device_name
        try:
            async with asyncio.timeout(self._config.fetch_timeout):
                name = await self._directory.device_name(thing.oid)
        except _FETCH_ERRORS as exc:
            _logger.info("Device directory lookup failed for %s: %s", thing.oid, exc)
            return None
        if not name:
            _logger.info("Device directory has no entry for %s", thing.oid)
            return None
        thing.device_name = name
        return name

    async def _fetch(self, source: Source) -> list[SourceSnapshot] | None:
        try:
            async with asyncio.timeout(self._config.fetch_timeout):
                return await self._sources[source].fetch_snapshots()
        except _FETCH_ERRORS as exc:
            _logger.info("%s fetch failed: %s", source.value, exc)
            return None

    async def _source_pass(
        self,
        oid: str,
        source: Source,
        predicate: SnapshotPredicate,
    ) -> tuple[bool, tuple[str, ...]]:
        snapshots = await self._fetch(source)
        if snapshots is None:
            return False, ()

        matches = [snapshot for snapshot in snapshots if predicate(snapshot)]

        async with self._registry.lock(oid):
            thing = self._registry.get(oid)
            if thing is None:
                # Removed while the fetch was in flight; do not resurrect it.
                return True, ()
            if thing.is_group:
                snapshot = fold_group(oid, matches)
            else:
                if len(matches) > 1:
                    _logger.debug("%s reports %d devices labelled %r; using the first", source.value, len(matches), thing.device_name)
                snapshot = matches[0] if matches else None

            if snapshot is None:
                thing.apply_absent(source)
            else:
                thing.apply_match(source, snapshot)
            _logger.debug("Merged %s view for %s (status=%s)", source.value, oid, thing.status.value)

        discovered: tuple[str, ...] = ()
        if snapshot is not None and not thing.is_group:
            discovered = self._discover_group(snapshot)
        self._notify(thing)
        return True, discovered

    def _discover_group(self, snapshot: SourceSnapshot) -> tuple[str, ...]:
        group_name = snapshot.group_name
        if not group_name or group_name in self._registry:
            return ()
        _logger.info("Discovered group %s", group_name)
        self._registry.upsert(Thing(target=Group(group_name)))
        if self._on_discover is not None:
            self._on_discover(group_name)
        return (group_name,)

    def _notify(self, thing: Thing) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(thing)
        except Exception:
            _logger.debug("on_update callback failed", exc_info=True)
