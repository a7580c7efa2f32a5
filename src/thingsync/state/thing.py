"""The reconciled Thing entity and its read-only projection."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict

from thingsync.models.command import CommandResult, DesiredState
from thingsync.models.snapshot import Capabilities, LightColor, Power, SourceSnapshot
from thingsync.models.target import Source, Target
from thingsync.state.policy import (
    ThingStatus,
    advance_status,
    is_offline,
    merged_state,
    preferred_view,
    status_for,
)


@dataclass
class PendingExpectation:
    """The one active expectation of a Thing.

    Replaced wholesale when a newer command supersedes it; ``task`` is the
    handle of the polling loop so the replacement can cancel it.  ``sent`` is
    False for loops that only track a cascade and never sent a command.
    """

    desired: DesiredState
    attempts_remaining: int
    deadline: float
    sent: bool = True
    task: asyncio.Task[CommandResult] | None = None

    def cancel(self) -> None:
        if self.task is not None and not self.task.done():
            self.task.cancel()


class ThingView(BaseModel):
    """Read-only projection of a Thing for rendering."""

    model_config = ConfigDict(frozen=True)

    oid: str
    is_group: bool
    status: ThingStatus
    title: str
    power: Power | None = None
    color: LightColor | None = None
    capabilities: Capabilities | None = None
    offline: bool = True
    pending: bool = False


@dataclass(eq=False)
class Thing:
    """A device or group reconciled from the public and private sources.

    ``public_view`` and ``private_view`` each have exactly one writer: the
    merge path of their own source.
    """

    target: Target
    status: ThingStatus = ThingStatus.INITIALIZING
    public_view: SourceSnapshot | None = None
    private_view: SourceSnapshot | None = None
    device_name: str | None = None
    pending_expectation: PendingExpectation | None = None
    _matched: set[Source] = field(default_factory=set, init=False, repr=False)
    _absent: set[Source] = field(default_factory=set, init=False, repr=False)

    @property
    def oid(self) -> str:
        return self.target.oid

    @property
    def is_group(self) -> bool:
        return self.target.is_group

    @property
    def group_name(self) -> str | None:
        """Group this device belongs to, as resolved by either source."""
        for view in (self.public_view, self.private_view):
            if view is not None and view.group_name:
                return view.group_name
        return None

    def get_view(self, source: Source) -> SourceSnapshot | None:
        return self.public_view if source == Source.PUBLIC else self.private_view

    def apply_match(self, source: Source, snapshot: SourceSnapshot) -> None:
        if source == Source.PUBLIC:
            self.public_view = snapshot
        else:
            self.private_view = snapshot
        self._matched.add(source)
        self._advance()

    def apply_absent(self, source: Source) -> None:
        """Record a successful fetch from *source* that did not contain the Thing."""
        self._absent.add(source)
        self._advance()

    def _advance(self) -> None:
        offline_match = any(
            view is not None and not view.connected
            for source, view in ((Source.PUBLIC, self.public_view), (Source.PRIVATE, self.private_view))
            if source in self._matched
        )
        candidate = status_for(matched=self._matched, absent=self._absent, offline_match=offline_match)
        self.status = advance_status(self.status, candidate)

    def reinit(self) -> None:
        """Explicit re-initialisation; the only way status moves backwards."""
        self.status = ThingStatus.INITIALIZING
        self._matched.clear()
        self._absent.clear()

    def merged(self) -> tuple[Power | None, LightColor | None]:
        return merged_state(self.public_view, self.private_view)

    def selectors(self) -> dict[Source, str]:
        """Selectors for every source that sees the Thing, private first."""
        selectors: dict[Source, str] = {}
        for source, view in ((Source.PRIVATE, self.private_view), (Source.PUBLIC, self.public_view)):
            if view is not None:
                selectors[source] = self.target.selector(view)
        return selectors

    def title(self) -> str:
        if self.is_group:
            return f"{self.oid} Group"
        if self.device_name:
            return self.device_name
        view = preferred_view(self.public_view, self.private_view)
        if view is not None and view.label:
            return view.label
        return self.oid

    def view(self) -> ThingView:
        power, color = self.merged()
        best = preferred_view(self.public_view, self.private_view)
        return ThingView(
            oid=self.oid,
            is_group=self.is_group,
            status=self.status,
            title=self.title(),
            power=power,
            color=color,
            capabilities=best.capabilities if best is not None else None,
            offline=is_offline(self.public_view, self.private_view),
            pending=self.pending_expectation is not None,
        )
