from __future__ import annotations

import asyncio

import pytest
from conftest import FakeBackend, light, spy_reconcile

from thingsync.config import EngineConfig
from thingsync.control.cascade import GroupCascade
from thingsync.engine import Engine
from thingsync.exceptions import CommandSendFailed, CommandTimeout, UnknownThing
from thingsync.models.command import DesiredState, ExpectationState
from thingsync.models.snapshot import Power
from thingsync.state.policy import ThingStatus
from thingsync.state.thing import ThingView


def _both(backend: FakeBackend, light_id: str, *, after: int, **changes: object) -> None:
    backend.public.schedule(light_id, after=after, **changes)
    backend.private.schedule(light_id, after=after, **changes)


@pytest.mark.asyncio
async def test_command_satisfied_when_sources_catch_up(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk", power="off"))
    engine = backend.engine()
    await engine.init("d1")
    calls = spy_reconcile(engine)
    _both(backend, "a1", after=3, power="on")

    result = await engine.set_power("d1", "on")

    assert result.state == ExpectationState.SATISFIED
    assert result.succeeded
    assert result.attempts == 3
    assert result.error is None
    assert calls["d1"] == 3
    view = engine.view("d1")
    assert view is not None
    assert view.power == Power.ON
    assert view.pending is False


@pytest.mark.asyncio
async def test_command_exhausts_after_max_attempts(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk", power="off"))
    engine = backend.engine()
    await engine.init("d1")
    calls = spy_reconcile(engine)

    result = await engine.set_power("d1", Power.ON)

    assert result.state == ExpectationState.EXHAUSTED
    assert result.attempts == 5
    assert isinstance(result.error, CommandTimeout)
    assert result.error.attempts == 5
    assert calls["d1"] == 5
    view = engine.view("d1")
    assert view is not None
    assert view.power == Power.OFF
    assert view.pending is False


@pytest.mark.asyncio
async def test_max_attempts_is_configurable(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk"))
    engine = backend.engine(max_attempts=2)
    await engine.init("d1")

    result = await engine.set_power("d1", "on")

    assert result.state == ExpectationState.EXHAUSTED
    assert result.attempts == 2


@pytest.mark.asyncio
async def test_command_sent_to_every_source_private_first(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk"))
    backend.transport.apply_immediately = True
    engine = backend.engine()
    await engine.init("d1")

    result = await engine.set_power("d1", "on")

    assert result.attempts == 1
    request = backend.transport.requests[0]
    assert request.oid == "d1"
    assert request.is_group is False
    assert list(request.selectors.items()) == [("private", "id:a1"), ("public", "id:a1")]


@pytest.mark.asyncio
async def test_group_command_cascades_to_each_member_once(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Lamp 1", group="g1", power="on"))
    backend.add_everywhere("d2", light("a2", "Lamp 2", group="g1", power="on"))
    backend.transport.apply_immediately = True
    engine = backend.engine()
    await engine.init("g1", is_group=True)
    await engine.init("d1")
    await engine.init("d2")
    calls = spy_reconcile(engine)

    result = await engine.set_power("g1", "off")

    assert result.state == ExpectationState.SATISFIED
    assert calls["g1"] == 1
    assert calls["d1"] == 1
    assert calls["d2"] == 1
    assert set(backend.transport.requests[0].selectors.values()) == {"group_id:gid-g1"}
    for oid in ("g1", "d1", "d2"):
        view = engine.view(oid)
        assert view is not None
        assert view.power == Power.OFF
    await engine.close()


@pytest.mark.asyncio
async def test_cascade_tracks_members_that_lag(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Lamp 1", group="g1", power="on"))
    backend.add_everywhere("d2", light("a2", "Lamp 2", group="g1", power="on"))
    engine = backend.engine()
    await engine.init("g1", is_group=True)
    await engine.init("d1")
    await engine.init("d2")
    backend.public.set("a1", power="off")
    backend.private.set("a1", power="off")

    tracked: list[str] = []
    cascade = GroupCascade(engine.registry, engine.reconciler, lambda oid, desired: tracked.append(oid))
    members = await cascade.refresh_members("g1", DesiredState(power=Power.OFF))

    assert set(members) == {"d1", "d2"}
    assert tracked == ["d2"]


@pytest.mark.asyncio
async def test_track_polls_without_sending(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk"))
    engine = backend.engine()
    await engine.init("d1")
    _both(backend, "a1", after=2, power="on")

    task = engine.executor.track("d1", DesiredState(power=Power.ON))
    assert task is not None
    result = await task

    assert result.state == ExpectationState.SATISFIED
    assert result.attempts == 2
    assert backend.transport.requests == []
    assert engine.executor.track("ghost", DesiredState(power=Power.ON)) is None


@pytest.mark.asyncio
async def test_device_command_refreshes_parent_group(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Lamp 1", group="Office"))
    backend.transport.apply_immediately = True
    engine = backend.engine()
    async with engine:
        await engine.init("d1")
        await engine.refresh("Office")
        calls = spy_reconcile(engine)

        result = await engine.set_power("d1", "on")

        assert result.succeeded
        assert calls["Office"] == 1
        group = engine.view("Office")
        assert group is not None
        assert group.power == Power.ON


@pytest.mark.asyncio
async def test_parent_group_refresh_can_be_disabled(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Lamp 1", group="Office"))
    backend.transport.apply_immediately = True
    engine = backend.engine(refresh_parent_group=False)
    async with engine:
        await engine.init("d1")
        await engine.refresh("Office")
        calls = spy_reconcile(engine)

        await engine.set_power("d1", "on")

        assert calls["Office"] == 0


@pytest.mark.asyncio
async def test_newer_command_supersedes_pending_expectation(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk", power="off"))
    engine = backend.engine(device_retry_delay=0.05)
    await engine.init("d1")

    first = asyncio.create_task(engine.set_power("d1", "on"))
    await asyncio.sleep(0.02)
    view = engine.view("d1")
    assert view is not None
    assert view.pending is True
    thing = engine.registry.get("d1")
    assert thing is not None
    older = thing.pending_expectation
    assert older is not None
    remaining = older.attempts_remaining
    calls = spy_reconcile(engine)

    second = await engine.set_power("d1", "off")
    first_result = await first
    # Give a stray loop time to tick if it were still alive.
    await asyncio.sleep(0.15)

    assert first_result.state == ExpectationState.SUPERSEDED
    assert second.state == ExpectationState.SATISFIED
    assert second.attempts == 1
    assert older.attempts_remaining == remaining
    assert calls["d1"] == second.attempts
    assert len(backend.transport.requests) == 2
    assert thing.pending_expectation is None


@pytest.mark.asyncio
async def test_rejected_send_raises_without_polling(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk"))
    backend.transport.accept = False
    engine = backend.engine()
    await engine.init("d1")
    calls = spy_reconcile(engine)

    with pytest.raises(CommandSendFailed) as excinfo:
        await engine.set_power("d1", "on")

    assert excinfo.value.oid == "d1"
    assert calls["d1"] == 0
    thing = engine.registry.get("d1")
    assert thing is not None
    assert thing.pending_expectation is None


@pytest.mark.asyncio
async def test_transport_error_is_wrapped(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk"))
    backend.transport.error = ConnectionResetError("reset by peer")
    engine = backend.engine()
    await engine.init("d1")

    with pytest.raises(CommandSendFailed) as excinfo:
        await engine.set_power("d1", "on")

    assert isinstance(excinfo.value.__cause__, ConnectionResetError)


@pytest.mark.asyncio
async def test_command_for_unknown_thing(backend: FakeBackend) -> None:
    engine = backend.engine()

    result = await engine.set_power("ghost", "on")

    assert result.state == ExpectationState.UNKNOWN_THING
    assert isinstance(result.error, UnknownThing)
    assert isinstance(result.error, LookupError)
    assert backend.transport.requests == []


@pytest.mark.asyncio
async def test_set_kelvin_waits_for_colour(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk", kelvin=3500))
    engine = backend.engine()
    await engine.init("d1")
    _both(backend, "a1", after=2, color={"hue": 0.0, "saturation": 0.0, "kelvin": 2700})

    result = await engine.set_kelvin("d1", 2700)

    assert result.state == ExpectationState.SATISFIED
    assert result.attempts == 2
    assert backend.transport.requests[0].desired.color is not None
    assert backend.transport.requests[0].desired.color.kelvin == 2700


@pytest.mark.asyncio
async def test_set_color_rejects_malformed_string_before_sending(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk"))
    engine = backend.engine()
    await engine.init("d1")

    with pytest.raises(ValueError):
        await engine.set_color("d1", "sparkly")

    assert backend.transport.requests == []


@pytest.mark.asyncio
async def test_remove_cancels_pending_command(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk"))
    engine = backend.engine(device_retry_delay=0.05)
    await engine.init("d1")

    command = asyncio.create_task(engine.set_power("d1", "on"))
    await asyncio.sleep(0.02)
    assert engine.remove("d1") is True
    result = await command

    assert result.state == ExpectationState.SUPERSEDED
    assert engine.view("d1") is None
    assert engine.remove("d1") is False


@pytest.mark.asyncio
async def test_close_cancels_outstanding_work(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk"))
    engine = backend.engine(device_retry_delay=0.05)
    await engine.init("d1")

    command = asyncio.create_task(engine.set_power("d1", "on"))
    await asyncio.sleep(0.02)
    await engine.close()
    result = await command

    assert result.state == ExpectationState.SUPERSEDED


@pytest.mark.asyncio
async def test_on_change_receives_views_and_errors_are_swallowed(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk"))
    seen: list[ThingView] = []

    def _on_change(view: ThingView) -> None:
        seen.append(view)
        raise RuntimeError("renderer crashed")

    engine = Engine(
        EngineConfig(device_retry_delay=0.0, group_retry_delay=0.0, fetch_timeout=1.0),
        public=backend.public,
        private=backend.private,
        transport=backend.transport,
        directory=backend.directory,
        on_change=_on_change,
    )

    view = await engine.init("d1")

    assert view.status == ThingStatus.READY
    assert seen[0].status == ThingStatus.INITIALIZING
    assert seen[-1].status == ThingStatus.READY
    assert {item.oid for item in seen} == {"d1"}


@pytest.mark.asyncio
async def test_views_and_refresh_all(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk"))
    backend.add_everywhere("d2", light("a2", "Lamp"))
    engine = backend.engine()
    await engine.init("d1")
    await engine.init("d2")
    backend.public.set("a2", power="on")
    backend.private.set("a2", power="on")

    results = await engine.refresh()

    assert {result.oid for result in results} == {"d1", "d2"}
    powers = {view.oid: view.power for view in engine.views()}
    assert powers == {"d1": Power.OFF, "d2": Power.ON}


@pytest.mark.asyncio
async def test_cascade_leaves_a_member_command_running(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Lamp 1", group="g1", power="on"))
    backend.add_everywhere("d2", light("a2", "Lamp 2", group="g1", power="on"))
    engine = backend.engine(device_retry_delay=0.05)
    await engine.init("g1", is_group=True)
    await engine.init("d1")
    await engine.init("d2")
    backend.public.set("a1", power="off")
    backend.private.set("a1", power="off")

    kelvin = asyncio.create_task(engine.set_kelvin("d2", 2700))
    await asyncio.sleep(0.01)
    thing = engine.registry.get("d2")
    assert thing is not None
    member_command = thing.pending_expectation
    assert member_command is not None

    await engine.cascade.refresh_members("g1", DesiredState(power=Power.OFF))

    assert thing.pending_expectation is member_command
    assert member_command.task is not None
    assert not member_command.task.done()

    backend.public.set("a2", color={"hue": 0.0, "saturation": 0.0, "kelvin": 2700})
    backend.private.set("a2", color={"hue": 0.0, "saturation": 0.0, "kelvin": 2700})
    result = await kelvin

    assert result.state == ExpectationState.SATISFIED
    await engine.close()


@pytest.mark.asyncio
async def test_track_replaces_an_earlier_tracking_loop(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk"))
    engine = backend.engine(device_retry_delay=0.05)
    await engine.init("d1")

    older = engine.executor.track("d1", DesiredState(power=Power.ON))
    newer = engine.executor.track("d1", DesiredState(power=Power.ON))
    assert older is not None
    assert newer is not None

    with pytest.raises(asyncio.CancelledError):
        await older
    assert not newer.done()
    await engine.close()
    assert newer.cancelled()


@pytest.mark.asyncio
async def test_remove_drops_executor_and_lock_bookkeeping(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk"))
    backend.transport.apply_immediately = True
    engine = backend.engine()
    await engine.init("d1")
    await engine.set_power("d1", "on")
    assert "d1" in engine.executor._generations

    engine.remove("d1")

    assert "d1" not in engine.executor._generations
    assert "d1" not in engine.registry._locks


@pytest.mark.asyncio
async def test_reinit_as_group_cancels_device_command(backend: FakeBackend) -> None:
    backend.add_everywhere("d1", light("a1", "Desk"))
    engine = backend.engine(device_retry_delay=0.05)
    await engine.init("d1")

    command = asyncio.create_task(engine.set_power("d1", "on"))
    await asyncio.sleep(0.02)
    view = await engine.init("d1", is_group=True)
    result = await command

    assert result.state == ExpectationState.SUPERSEDED
    assert view.is_group is True
    thing = engine.registry.get("d1")
    assert thing is not None
    assert thing.pending_expectation is None
