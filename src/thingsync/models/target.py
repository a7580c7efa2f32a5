"""Sources and reconciliation targets.

A target is either a single :class:`Device` or a :class:`Group`.  Both run
through the same reconciliation path; they only differ in the predicate used
to pick their snapshots out of a source listing and in the selector used to
address them when sending a command.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar

from thingsync.models.snapshot import SourceSnapshot

SnapshotPredicate = Callable[[SourceSnapshot], bool]


class Source(StrEnum):
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True, slots=True)
class Device:
    """A single bulb, matched by its human label."""

    oid: str
    is_group: ClassVar[bool] = False

    def predicate(self, device_name: str | None) -> SnapshotPredicate:
        def _match(snapshot: SourceSnapshot) -> bool:
            return device_name is not None and snapshot.label == device_name

        return _match

    def selector(self, snapshot: SourceSnapshot) -> str:
        return f"id:{snapshot.id}"


@dataclass(frozen=True, slots=True)
class Group:
    """A named group of bulbs, matched by group name."""

    oid: str
    is_group: ClassVar[bool] = True

    def predicate(self, device_name: str | None = None) -> SnapshotPredicate:
        def _match(snapshot: SourceSnapshot) -> bool:
            return snapshot.group_name == self.oid

        return _match

    def selector(self, snapshot: SourceSnapshot) -> str:
        # Folded group snapshots carry the group id as their id.
        return f"group_id:{snapshot.group_id or snapshot.id}"


Target = Device | Group


def make_target(oid: str, *, is_group: bool = False) -> Target:
    oid = oid.strip()
    if not oid:
        raise ValueError("oid must be non-empty")
    return Group(oid) if is_group else Device(oid)
