"""State layer.

This package is the single source of truth for how snapshots from the public
and private sources are merged into one deterministic per-Thing state.
"""

from thingsync.state.policy import ThingStatus
from thingsync.state.registry import Registry
from thingsync.state.thing import PendingExpectation, Thing, ThingView

__all__ = ["PendingExpectation", "Registry", "Thing", "ThingStatus", "ThingView"]
