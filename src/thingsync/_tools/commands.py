"""Command helpers shared by the scripts."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from thingsync.engine import Engine
from thingsync.exceptions import ThingSyncError
from thingsync.models.command import CommandResult, DesiredState
from thingsync.models.snapshot import LightColor, Power


@dataclass(frozen=True)
class CommandOutcome:
    """Settled result of one command, or the error that stopped it."""

    oid: str
    result: CommandResult | None = None
    error: ThingSyncError | None = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None and self.result.succeeded

    def to_dict(self) -> dict[str, Any]:
        if self.result is None:
            return {"oid": self.oid, "state": "send_failed", "attempts": 0, "error": str(self.error)}
        error = self.result.error
        return {
            "oid": self.oid,
            "state": self.result.state.value,
            "attempts": self.result.attempts,
            "error": str(error) if error is not None else None,
        }


def build_desired(power: str | None = None, color: str | None = None) -> DesiredState | None:
    """Combine power and colour options into one desired state.

    Raises ``ValueError`` for malformed values; returns ``None`` when neither
    option is set.
    """
    if power is None and color is None:
        return None
    return DesiredState(
        power=Power.coerce(power) if power is not None else None,
        color=LightColor.parse(color) if color is not None else None,
    )


async def issue_all(engine: Engine, oids: Iterable[str], desired: DesiredState) -> list[CommandOutcome]:
    """Issue *desired* once per oid; a failed send does not abort the others."""
    oids = list(dict.fromkeys(oids))
    settled = await asyncio.gather(*(engine.issue_command(oid, desired) for oid in oids), return_exceptions=True)
    outcomes: list[CommandOutcome] = []
    for oid, item in zip(oids, settled, strict=True):
        if isinstance(item, CommandResult):
            outcomes.append(CommandOutcome(oid=oid, result=item))
        elif isinstance(item, ThingSyncError):
            outcomes.append(CommandOutcome(oid=oid, error=item))
        else:
            raise item
    return outcomes


def format_outcome(outcome: CommandOutcome) -> str:
    if outcome.result is None:
        return f"  {outcome.oid:<16} failed: {outcome.error}"
    result = outcome.result
    line = f"  {result.oid:<16} {result.state.value} after {result.attempts} attempt(s)"
    if result.error is not None:
        line += f": {result.error}"
    return line
