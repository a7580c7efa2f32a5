"""Command execution with bounded convergence polling.

State machine per command::

    IDLE -> AWAITING(expectation) -> SATISFIED | EXHAUSTED

A successful send only means the transport accepted the command.  The
executor then re-reconciles the Thing on a fixed delay until the merged view
reports the desired state or the attempt budget runs out.  A newer command
for the same oid cancels the older expectation loop (supersession, not
queuing).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable

from thingsync._transport import CommandTransport
from thingsync.config import EngineConfig
from thingsync.exceptions import CommandSendFailed, CommandTimeout, UnknownThing
from thingsync.ingestion.reconcile import Reconciler
from thingsync.models.command import CommandRequest, CommandResult, DesiredState, ExpectationState
from thingsync.models.target import Target
from thingsync.state.registry import Registry
from thingsync.state.thing import PendingExpectation, Thing

_logger = logging.getLogger(__name__)

SettleHook = Callable[[Target, DesiredState, CommandResult], Awaitable[None]]


class CommandExecutor:
    """Sends commands and tracks their expectations, one loop per oid."""

    def __init__(
        self,
        registry: Registry,
        reconciler: Reconciler,
        transport: CommandTransport,
        config: EngineConfig,
        *,
        on_settled: SettleHook | None = None,
    ) -> None:
        self._registry = registry
        self._reconciler = reconciler
        self._transport = transport
        self._config = config
        self._on_settled = on_settled
        self._generations: dict[str, int] = {}
        # Shared across oids so a forgotten oid never reuses an old generation.
        self._counter = itertools.count(1)

    def set_settle_hook(self, hook: SettleHook | None) -> None:
        self._on_settled = hook

    async def issue_command(self, oid: str, desired: DesiredState) -> CommandResult:
        """Send *desired* to *oid* and wait until the expectation settles.

        Raises
        ------
        CommandSendFailed
            If the transport rejected the send.  No polling happens.
        """
        thing = self._registry.get(oid)
        if thing is None:
            return CommandResult(
                oid=oid,
                state=ExpectationState.UNKNOWN_THING,
                desired=desired,
                error=UnknownThing(oid),
            )

        self._supersede(thing)
        generation = self._bump(oid)

        request = CommandRequest(oid=oid, is_group=thing.is_group, desired=desired, selectors=thing.selectors())
        _logger.info("Sending %s to %s", desired.describe(), oid)
        try:
            async with asyncio.timeout(self._config.send_timeout):
                accepted = await self._transport.send_command(request)
        except CommandSendFailed:
            raise
        except (OSError, TimeoutError) as exc:
            raise CommandSendFailed(f"Sending {desired.describe()} to {oid} failed: {exc}", oid=oid) from exc
        if not accepted:
            raise CommandSendFailed(f"Transport rejected {desired.describe()} for {oid}", oid=oid)

        thing = self._registry.get(oid)
        if thing is None:
            return CommandResult(
                oid=oid,
                state=ExpectationState.UNKNOWN_THING,
                desired=desired,
                error=UnknownThing(oid),
            )
        if self._generations.get(oid) != generation:
            # A newer command was issued while this one was being sent.
            return CommandResult(oid=oid, state=ExpectationState.SUPERSEDED, desired=desired)

        expectation, task = self._start(thing, desired, sent=True)
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task.cancelled():
            _logger.debug("Expectation for %s superseded", oid)
            return CommandResult(
                oid=oid,
                state=ExpectationState.SUPERSEDED,
                desired=desired,
                attempts=self._config.max_attempts - expectation.attempts_remaining,
            )
        return task.result()

    def track(self, oid: str, desired: DesiredState) -> asyncio.Task[CommandResult] | None:
        """Start an expectation loop without sending anything.

        Used for group members after a group command: they are polled on the
        single-device path and never cascade further.  A command sent to the
        member itself keeps precedence; only earlier tracking loops are
        replaced.
        """
        thing = self._registry.get(oid)
        if thing is None:
            return None
        pending = thing.pending_expectation
        if pending is not None and pending.sent:
            _logger.debug("Not tracking %s: a command sent to it is still pending", oid)
            return None
        self._supersede(thing)
        self._bump(oid)
        return self._start(thing, desired, sent=False)[1]

    def cancel(self, oid: str) -> bool:
        """Cancel the pending expectation of *oid*, if any."""
        thing = self._registry.get(oid)
        if thing is None or thing.pending_expectation is None:
            return False
        self._supersede(thing)
        self._bump(oid)
        return True

    def forget(self, oid: str) -> None:
        """Cancel anything pending for *oid* and drop its bookkeeping."""
        self.cancel(oid)
        self._generations.pop(oid, None)

    def _bump(self, oid: str) -> int:
        generation = next(self._counter)
        self._generations[oid] = generation
        return generation

    def _supersede(self, thing: Thing) -> None:
        pending = thing.pending_expectation
        if pending is None:
            return
        _logger.debug("Superseding pending %s for %s", pending.desired.describe(), thing.oid)
        pending.cancel()
        thing.pending_expectation = None

    def _start(
        self,
        thing: Thing,
        desired: DesiredState,
        *,
        sent: bool,
    ) -> tuple[PendingExpectation, asyncio.Task[CommandResult]]:
        """Create the expectation loop; only loops of sent commands run the settle hook."""
        loop = asyncio.get_running_loop()
        delay = self._config.retry_delay(is_group=thing.is_group)
        budget = self._config.max_attempts * (delay + self._config.fetch_timeout)
        expectation = PendingExpectation(
            desired=desired,
            attempts_remaining=self._config.max_attempts,
            deadline=loop.time() + budget,
            sent=sent,
        )
        task = asyncio.create_task(
            self._expect(thing.target, expectation, delay=delay, settle=sent),
            name=f"thingsync-expect-{thing.oid}",
        )
        expectation.task = task
        thing.pending_expectation = expectation
        return expectation, task

    async def _expect(
        self,
        target: Target,
        expectation: PendingExpectation,
        *,
        delay: float,
        settle: bool,
    ) -> CommandResult:
        oid = target.oid
        desired = expectation.desired
        loop = asyncio.get_running_loop()
        attempts = 0
        state = ExpectationState.EXHAUSTED
        try:
            while True:
                await asyncio.sleep(delay)
                expectation.attempts_remaining -= 1
                attempts += 1
                # A superseded loop stops here, but its fetch still lands.
                await asyncio.shield(self._reconciler.reconcile(oid))

                thing = self._registry.get(oid)
                if thing is None:
                    return CommandResult(
                        oid=oid,
                        state=ExpectationState.UNKNOWN_THING,
                        desired=desired,
                        attempts=attempts,
                        error=UnknownThing(oid),
                    )
                if desired.matches(*thing.merged()):
                    state = ExpectationState.SATISFIED
                    break
                if expectation.attempts_remaining <= 0 or loop.time() >= expectation.deadline:
                    break
                _logger.debug(
                    "%s not yet %s (attempt %d/%d)", oid, desired.describe(), attempts, self._config.max_attempts
                )
        finally:
            current = self._registry.get(oid)
            if current is not None and current.pending_expectation is expectation:
                current.pending_expectation = None

        error: CommandTimeout | None = None
        if state == ExpectationState.EXHAUSTED:
            error = CommandTimeout(
                f"{oid} did not report {desired.describe()} after {attempts} attempts",
                oid=oid,
                attempts=attempts,
            )
            _logger.warning("%s", error)
        else:
            _logger.info("%s reached %s after %d attempts", oid, desired.describe(), attempts)

        result = CommandResult(oid=oid, state=state, desired=desired, attempts=attempts, error=error)
        if settle and self._on_settled is not None:
            try:
                await self._on_settled(target, desired, result)
            except Exception:
                _logger.warning("Post-command refresh for %s failed", oid, exc_info=True)
        return result
