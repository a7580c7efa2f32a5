"""Custom exception hierarchy for thingsync."""

from __future__ import annotations


class ThingSyncError(Exception):
    """Base exception for all thingsync errors."""


class ConfigError(ThingSyncError):
    """Invalid or missing configuration."""


class FetchFailure(ThingSyncError):
    """A snapshot source could not be reached (network, non-200, invalid JSON).

    Transient: the reconciler logs it and leaves the source's view untouched.
    """

    def __init__(
        self,
        message: str,
        *,
        source: str = "",
        status_code: int | None = None,
    ) -> None:
        self.source = source
        self.status_code = status_code
        super().__init__(message)


class CommandError(ThingSyncError):
    """Base for failures of an issued command."""

    def __init__(self, message: str, *, oid: str = "") -> None:
        self.oid = oid
        super().__init__(message)


class CommandSendFailed(CommandError):
    """The command transport rejected the send.

    The expectation loop is aborted immediately; no retries are attempted.
    """


class CommandTimeout(CommandError):
    """Expectation exhausted without the sources reporting the desired state.

    This is a soft condition: it is attached to the
    :class:`~thingsync.models.command.CommandResult`, never raised.  The device
    may simply be slow or offline.
    """

    def __init__(self, message: str, *, oid: str = "", attempts: int = 0) -> None:
        self.attempts = attempts
        super().__init__(message, oid=oid)


class UnknownThing(ThingSyncError, LookupError):
    """Operation referenced an oid that is not in the registry."""

    def __init__(self, oid: str) -> None:
        self.oid = oid
        super().__init__(f"Unknown thing: {oid!r}")
