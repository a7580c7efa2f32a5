"""Command models: desired state, outgoing request, and settled result."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from thingsync.exceptions import ThingSyncError
from thingsync.models.snapshot import LightColor, Power
from thingsync.models.target import Source


class ExpectationState(StrEnum):
    """Lifecycle of one command's expectation.

    ``IDLE -> AWAITING -> SATISFIED | EXHAUSTED``; ``SUPERSEDED`` when a newer
    command for the same Thing replaced it, ``UNKNOWN_THING`` when the oid was
    never registered.
    """

    IDLE = "idle"
    AWAITING = "awaiting"
    SATISFIED = "satisfied"
    EXHAUSTED = "exhausted"
    SUPERSEDED = "superseded"
    UNKNOWN_THING = "unknown_thing"


class DesiredState(BaseModel):
    """What the caller expects the sources to report once a command lands."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    power: Power | None = None
    color: LightColor | None = None

    @model_validator(mode="after")
    def _require_something(self) -> DesiredState:
        if self.power is None and (self.color is None or self.color.is_empty()):
            raise ValueError("desired state needs a power or a colour component")
        return self

    def matches(self, power: Power | None, color: LightColor | None) -> bool:
        if self.power is not None and power != self.power:
            return False
        if self.color is not None and not self.color.satisfied_by(color):
            return False
        return True

    def describe(self) -> str:
        parts: list[str] = []
        if self.power is not None:
            parts.append(f"power:{self.power.value}")
        if self.color is not None and not self.color.is_empty():
            parts.append(self.color.to_command_string())
        return " ".join(parts)


class CommandRequest(BaseModel):
    """One command as handed to the transport.

    ``selectors`` maps every source that currently sees the Thing to the
    selector addressing it there; insertion order is private first, which is
    the faster path when the device is on the local network.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    oid: str
    is_group: bool = False
    desired: DesiredState
    selectors: dict[Source, str] = Field(default_factory=dict)


class CommandResult(BaseModel):
    """Outcome of :meth:`thingsync.engine.Engine.issue_command`."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    oid: str
    state: ExpectationState
    desired: DesiredState | None = None
    attempts: int = 0
    error: ThingSyncError | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == ExpectationState.SATISFIED
