"""Group cascade: propagate a settled group command to its members."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from thingsync.ingestion.reconcile import Reconciler
from thingsync.models.command import CommandResult, DesiredState
from thingsync.state.registry import Registry

_logger = logging.getLogger(__name__)

TrackFn = Callable[[str, DesiredState], "asyncio.Task[CommandResult] | None"]


class GroupCascade:
    """Re-reconcile every member of a group once its command has settled.

    Depth is exactly one level: members are reconciled on the single-device
    path and never cascade further.
    """

    def __init__(self, registry: Registry, reconciler: Reconciler, track: TrackFn) -> None:
        self._registry = registry
        self._reconciler = reconciler
        self._track = track

    async def refresh_members(self, group_oid: str, desired: DesiredState) -> tuple[str, ...]:
        """Reconcile each member once; keep polling the ones that lag behind.

        Returns the oids of the members that were reconciled.
        """
        members = tuple(thing.oid for thing in self._registry.members_of(group_oid))
        if not members:
            _logger.debug("Group %s has no tracked members", group_oid)
            return ()

        _logger.debug("Cascading %s from %s to %s", desired.describe(), group_oid, ", ".join(members))
        await asyncio.gather(*(self._reconciler.reconcile(oid) for oid in members))

        for oid in members:
            thing = self._registry.get(oid)
            if thing is None or desired.matches(*thing.merged()):
                continue
            _logger.debug("Member %s of %s has not converged yet", oid, group_oid)
            self._track(oid, desired)
        return members
