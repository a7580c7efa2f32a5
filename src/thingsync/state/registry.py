"""In-memory registry of reconciled Things.

This is the only shared mutable state of an engine.  View writes for one oid
are serialized through :meth:`Registry.lock`; unrelated oids never share a
lock, so a slow group cascade does not hold up other Things.
"""

from __future__ import annotations

import asyncio

from thingsync.state.thing import Thing


class Registry:
    """Keyed store of :class:`Thing` entities; at most one Thing per oid."""

    def __init__(self) -> None:
        self._things: dict[str, Thing] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def upsert(self, thing: Thing) -> Thing:
        """Insert *thing*, replacing any entry with the same oid."""
        self._things[thing.oid] = thing
        self._prune_locks()
        return thing

    def remove(self, oid: str) -> Thing | None:
        """Delete the Thing for *oid* if present; no-op otherwise."""
        thing = self._things.pop(oid, None)
        self._prune_locks()
        return thing

    def get(self, oid: str) -> Thing | None:
        return self._things.get(oid)

    def all(self) -> tuple[Thing, ...]:
        """Copy of the current Things; iterating it is unaffected by later mutation."""
        return tuple(self._things.values())

    def members_of(self, group_oid: str) -> tuple[Thing, ...]:
        """Single-device Things whose resolved group name is *group_oid*."""
        return tuple(thing for thing in self.all() if not thing.is_group and thing.group_name == group_oid)

    def _prune_locks(self) -> None:
        """Drop idle locks of oids that are no longer registered."""
        stale = [oid for oid, lock in self._locks.items() if oid not in self._things and not lock.locked()]
        for oid in stale:
            del self._locks[oid]

    def lock(self, oid: str) -> asyncio.Lock:
        lock = self._locks.get(oid)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[oid] = lock
        return lock

    def __contains__(self, oid: object) -> bool:
        return oid in self._things

    def __len__(self) -> int:
        return len(self._things)
