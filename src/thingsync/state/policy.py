"""Deterministic lifecycle and merge policy.

This module contains *no* I/O.  The ingestion layer fetches and filters
snapshots; these helpers decide what a Thing's status becomes and how the two
source views combine into one.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import StrEnum

from thingsync.models.snapshot import LightColor, Power, SourceSnapshot
from thingsync.models.target import Source


class ThingStatus(StrEnum):
    INITIALIZING = "initializing"
    PARTIAL = "partial"
    READY = "ready"


_STATUS_RANK: dict[ThingStatus, int] = {
    ThingStatus.INITIALIZING: 0,
    ThingStatus.PARTIAL: 1,
    ThingStatus.READY: 2,
}


def advance_status(current: ThingStatus, candidate: ThingStatus) -> ThingStatus:
    """Forward-only transition: never returns a status below *current*."""
    if _STATUS_RANK[candidate] > _STATUS_RANK[current]:
        return candidate
    return current


def status_for(
    *,
    matched: Iterable[Source],
    absent: Iterable[Source],
    offline_match: bool,
) -> ThingStatus:
    """Status implied by which sources have resolved the Thing.

    Policy:
    - nothing matched yet: ``INITIALIZING``
    - one source matched: ``PARTIAL``
    - both matched, or the other source fetched fine without seeing the
      Thing, or a matched view says the device is disconnected: ``READY``
    """
    matched_set = set(matched)
    if not matched_set:
        return ThingStatus.INITIALIZING
    if len(matched_set) == len(Source) or offline_match:
        return ThingStatus.READY
    if set(absent) - matched_set:
        return ThingStatus.READY
    return ThingStatus.PARTIAL


def fold_group(group_oid: str, members: Sequence[SourceSnapshot]) -> SourceSnapshot | None:
    """Fold one source's member snapshots into a single group snapshot.

    The group is lit when any connected member is lit; colour and
    capabilities come from the first member.
    """
    if not members:
        return None
    first = members[0]
    lit = any(member.power == Power.ON and member.connected for member in members)
    return SourceSnapshot(
        id=first.group_id or group_oid,
        label=group_oid,
        power=Power.ON if lit else Power.OFF,
        color=first.color,
        group_id=first.group_id,
        group_name=group_oid,
        connected=any(member.connected for member in members),
        capabilities=first.capabilities,
        raw={"members": [member.id for member in members]},
    )


def preferred_view(
    public_view: SourceSnapshot | None,
    private_view: SourceSnapshot | None,
) -> SourceSnapshot | None:
    """The view that wins field resolution.

    The local network view is fresher when the device is reachable on it;
    otherwise fall back to the cloud view.
    """
    if private_view is not None and private_view.connected:
        return private_view
    if public_view is not None:
        return public_view
    return private_view


def merged_state(
    public_view: SourceSnapshot | None,
    private_view: SourceSnapshot | None,
) -> tuple[Power | None, LightColor | None]:
    view = preferred_view(public_view, private_view)
    if view is None:
        return None, None
    return view.power, view.color


def is_offline(public_view: SourceSnapshot | None, private_view: SourceSnapshot | None) -> bool:
    views = [view for view in (public_view, private_view) if view is not None]
    if not views:
        return True
    return not any(view.connected for view in views)
