import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from punchclock.auth import AuthContext
from punchclock.client import CLOCKED_IN_MESSAGE, parse_status
from punchclock.credentials import MemoryCredentialStore
from punchclock.engine import SessionEngine
from punchclock.errors import (
    EngineNotReady,
    InvalidTransition,
    LocationDenied,
    LocationUnavailable,
    NetworkFailure,
    NotAuthenticated,
    PunchInProgress,
    PunchRejected,
)
from punchclock.location import DeniedLocationProvider, FixedLocationProvider
from punchclock.models import (
    AttendanceEntry,
    EngineState,
    Identity,
    PunchDirection,
    PunchReceipt,
    StatusReport,
)

IDENTITY = Identity(id="42", name="Ada", email="ada@example.com", company_id="7")
START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start=START, step=timedelta(minutes=30)):
        self.now = start
        self.step = step

    def __call__(self):
        current = self.now
        self.now = self.now + self.step
        return current


def make_client(clocked_in=False):
    client = MagicMock()
    client.get_status = AsyncMock(return_value=StatusReport(clocked_in=clocked_in))
    client.get_history = AsyncMock(return_value=[])
    client.submit_punch = AsyncMock(
        side_effect=lambda employee_id, company_id, direction, location: PunchReceipt(direction)
    )
    return client


def make_engine(client, *, location=None, clock=None, signed_in=True, location_timeout=None):
    initial = {"user": json.dumps(IDENTITY.to_record())} if signed_in else {}
    auth = AuthContext(MagicMock(), MemoryCredentialStore(initial))
    return SessionEngine(
        auth,
        client,
        location or FixedLocationProvider(12.9, 77.6),
        clock=clock or FakeClock(),
        location_timeout=location_timeout,
    )


async def ready_engine(client, **kwargs):
    engine = make_engine(client, **kwargs)
    await engine.initialize()
    return engine


def test_check_status_opens_session_when_remote_reports_clocked_in():
    client = make_client()
    client.get_status.return_value = parse_status({"status": 200, "message": CLOCKED_IN_MESSAGE})

    async def scenario():
        engine = await ready_engine(client)
        return engine, await engine.check_status()

    engine, session = asyncio.run(scenario())

    client.get_status.assert_awaited_once_with("42")
    assert session is not None
    assert session.punch_out_at is None
    assert engine.current_session == session
    assert engine.state is EngineState.OPEN


def test_check_status_is_idempotent():
    client = make_client(clocked_in=True)

    async def scenario():
        engine = await ready_engine(client)
        first = await engine.check_status()
        second = await engine.check_status()
        return first, second

    first, second = asyncio.run(scenario())

    assert first is not None
    assert first == second


def test_check_status_clears_session_when_not_clocked_in():
    client = make_client(clocked_in=True)

    async def scenario():
        engine = await ready_engine(client)
        await engine.check_status()
        client.get_status.return_value = StatusReport(clocked_in=False)
        return engine, await engine.check_status()

    engine, session = asyncio.run(scenario())

    assert session is None
    assert engine.current_session is None
    assert engine.state is EngineState.IDLE


def test_check_status_fails_closed_and_reraises():
    client = make_client(clocked_in=True)

    async def scenario():
        engine = await ready_engine(client)
        await engine.check_status()
        assert engine.current_session is not None
        client.get_status.side_effect = NetworkFailure("boom")
        with pytest.raises(NetworkFailure, match="boom"):
            await engine.check_status()
        return engine

    engine = asyncio.run(scenario())

    assert engine.current_session is None


def test_check_status_without_identity_raises_not_authenticated():
    client = make_client()

    async def scenario():
        engine = await ready_engine(client, signed_in=False)
        with pytest.raises(NotAuthenticated):
            await engine.check_status()

    asyncio.run(scenario())
    client.get_status.assert_not_awaited()


def test_punch_in_rejected_by_server_keeps_session_empty():
    client = make_client()
    client.submit_punch.side_effect = PunchRejected("Shift not started", status=400)

    async def scenario():
        engine = await ready_engine(client)
        with pytest.raises(PunchRejected, match="Shift not started"):
            await engine.punch_in()
        return engine

    engine = asyncio.run(scenario())

    assert engine.current_session is None
    assert engine.state is EngineState.IDLE
    employee_id, company_id, direction, location = client.submit_punch.await_args.args
    assert (employee_id, company_id, direction) == ("42", "7", PunchDirection.CLOCK_IN)
    assert (location.latitude, location.longitude) == (12.9, 77.6)


def test_punch_in_with_denied_location_does_not_contact_server():
    client = make_client()

    async def scenario():
        engine = await ready_engine(client, location=DeniedLocationProvider())
        with pytest.raises(LocationDenied, match="Permission to access location was denied"):
            await engine.punch_in()
        return engine

    engine = asyncio.run(scenario())

    assert engine.current_session is None
    client.submit_punch.assert_not_awaited()


def test_punch_out_with_failed_location_leaves_open_session_untouched():
    client = make_client(clocked_in=True)

    async def scenario():
        engine = await ready_engine(client, location=FixedLocationProvider(None, None))
        before = await engine.check_status()
        with pytest.raises(LocationUnavailable):
            await engine.punch_out()
        return before, engine

    before, engine = asyncio.run(scenario())

    assert engine.current_session == before
    assert engine.history == ()
    client.submit_punch.assert_not_awaited()


def test_slow_location_fix_times_out_as_unavailable():
    client = make_client()

    class SlowProvider:
        async def request_permission(self):
            return True

        async def get_current_position(self):
            await asyncio.sleep(5)

    async def scenario():
        engine = await ready_engine(client, location=SlowProvider(), location_timeout=0.01)
        with pytest.raises(LocationUnavailable):
            await engine.punch_in()
        return engine

    engine = asyncio.run(scenario())

    assert engine.current_session is None


def test_punch_in_without_identity_raises_not_authenticated():
    client = make_client()

    async def scenario():
        engine = await ready_engine(client, signed_in=False)
        with pytest.raises(NotAuthenticated, match="User not authenticated"):
            await engine.punch_in()
        return engine

    engine = asyncio.run(scenario())

    assert engine.current_session is None
    client.submit_punch.assert_not_awaited()


def test_punch_in_then_out_appends_one_closed_session():
    client = make_client()
    clock = FakeClock()

    async def scenario():
        engine = await ready_engine(client, clock=clock)
        opened = await engine.punch_in()
        assert engine.state is EngineState.OPEN
        closed = await engine.punch_out()
        return engine, opened, closed

    engine, opened, closed = asyncio.run(scenario())

    assert engine.current_session is None
    assert engine.state is EngineState.IDLE
    assert engine.history == (closed,)
    assert closed.id == opened.id
    assert closed.punch_in_at == START
    assert closed.punch_out_at == START + timedelta(minutes=30)
    assert closed.punch_out_at > closed.punch_in_at
    directions = [call.args[2] for call in client.submit_punch.await_args_list]
    assert directions == [PunchDirection.CLOCK_IN, PunchDirection.CLOCK_OUT]


def test_history_is_most_recent_first_across_several_pairs():
    client = make_client()

    async def scenario():
        engine = await ready_engine(client)
        closed = []
        for _ in range(3):
            await engine.punch_in()
            closed.append(await engine.punch_out())
        return engine, closed

    engine, closed = asyncio.run(scenario())

    assert len(engine.history) == 3
    assert engine.history[0] == closed[-1]
    assert list(engine.history) == list(reversed(closed))
    assert len({record.id for record in engine.history}) == 3


def test_punch_out_without_local_session_is_reported_not_silent(caplog):
    client = make_client()

    async def scenario():
        engine = await ready_engine(client)
        return engine, await engine.punch_out()

    with caplog.at_level(logging.WARNING, logger="punchclock"):
        engine, closed = asyncio.run(scenario())

    assert closed is None
    assert engine.history == ()
    client.submit_punch.assert_awaited_once()
    assert any("no session was open locally" in record.getMessage() for record in caplog.records)


def test_punch_in_while_open_is_an_invalid_transition():
    client = make_client(clocked_in=True)

    async def scenario():
        engine = await ready_engine(client)
        await engine.check_status()
        with pytest.raises(InvalidTransition):
            await engine.punch_in()

    asyncio.run(scenario())
    client.submit_punch.assert_not_awaited()


def test_second_punch_while_first_in_flight_is_rejected():
    client = make_client()
    gate = asyncio.Event()

    async def slow_submit(employee_id, company_id, direction, location):
        await gate.wait()
        return PunchReceipt(direction)

    client.submit_punch.side_effect = slow_submit

    async def scenario():
        engine = await ready_engine(client)
        first = asyncio.create_task(engine.punch_in())
        while engine.state is not EngineState.PUNCHING:
            await asyncio.sleep(0)
        with pytest.raises(PunchInProgress):
            await engine.punch_in()
        with pytest.raises(PunchInProgress):
            await engine.punch_out()
        gate.set()
        await first
        return engine

    engine = asyncio.run(scenario())

    assert client.submit_punch.await_count == 1
    assert engine.state is EngineState.OPEN


def test_status_check_waits_for_in_flight_punch_and_keeps_its_session():
    client = make_client(clocked_in=True)
    gate = asyncio.Event()

    async def slow_submit(employee_id, company_id, direction, location):
        await gate.wait()
        return PunchReceipt(direction)

    client.submit_punch.side_effect = slow_submit

    async def scenario():
        engine = await ready_engine(client)
        punch = asyncio.create_task(engine.punch_in())
        while engine.state is not EngineState.PUNCHING:
            await asyncio.sleep(0)
        status = asyncio.create_task(engine.check_status())
        await asyncio.sleep(0)
        client.get_status.assert_not_awaited()
        gate.set()
        opened = await punch
        return opened, await status

    opened, restored = asyncio.run(scenario())

    assert restored == opened


def test_punch_rejected_while_status_check_in_flight():
    client = make_client(clocked_in=True)
    gate = asyncio.Event()

    async def slow_status(employee_id):
        await gate.wait()
        return StatusReport(clocked_in=True)

    client.get_status.side_effect = slow_status

    async def scenario():
        engine = await ready_engine(client)
        status = asyncio.create_task(engine.check_status())
        while not client.get_status.await_count:
            await asyncio.sleep(0)
        with pytest.raises(PunchInProgress):
            await engine.punch_in()
        with pytest.raises(PunchInProgress):
            await engine.punch_out()
        gate.set()
        return await status

    restored = asyncio.run(scenario())

    assert restored is not None
    client.submit_punch.assert_not_awaited()


def test_punch_completing_after_close_leaves_engine_empty(caplog):
    client = make_client()
    gate = asyncio.Event()

    async def slow_submit(employee_id, company_id, direction, location):
        await gate.wait()
        return PunchReceipt(direction)

    client.submit_punch.side_effect = slow_submit

    async def scenario():
        engine = await ready_engine(client)
        punch = asyncio.create_task(engine.punch_in())
        while not client.submit_punch.await_count:
            await asyncio.sleep(0)
        engine.close()
        gate.set()
        with pytest.raises(EngineNotReady):
            await punch
        return engine

    with caplog.at_level(logging.INFO, logger="punchclock"):
        engine = asyncio.run(scenario())

    assert engine.current_session is None
    assert engine.state is EngineState.IDLE
    assert "Clock-in completed after the session engine was closed" in caplog.text
    assert "Punched in" not in caplog.text


def test_history_arriving_after_close_is_discarded():
    client = make_client()
    gate = asyncio.Event()

    async def slow_history(employee_id):
        await gate.wait()
        return [AttendanceEntry(id="r1", clock_in=START - timedelta(days=1), clock_out=START)]

    client.get_history.side_effect = slow_history

    async def scenario():
        engine = await ready_engine(client)
        fetch = asyncio.create_task(engine.fetch_history())
        while not client.get_history.await_count:
            await asyncio.sleep(0)
        engine.close()
        gate.set()
        with pytest.raises(EngineNotReady):
            await fetch
        return engine

    engine = asyncio.run(scenario())

    assert engine.history == ()
    assert engine.entries == ()


def test_synthesized_ids_are_unique_for_identical_timestamps():
    client = make_client(clocked_in=True)
    clock = FakeClock(step=timedelta(0))

    async def scenario():
        engine = await ready_engine(client, clock=clock)
        first = await engine.check_status()
        client.get_status.return_value = StatusReport(clocked_in=False)
        await engine.check_status()
        client.get_status.return_value = StatusReport(clocked_in=True)
        second = await engine.check_status()
        return first, second

    first, second = asyncio.run(scenario())

    assert first.punch_in_at == second.punch_in_at
    assert first.id != second.id


def test_fetch_history_replaces_local_history():
    client = make_client()
    remote = [
        AttendanceEntry(id="r2", clock_in=START - timedelta(days=1), clock_out=START - timedelta(hours=16)),
        AttendanceEntry(id="r1", clock_in=START - timedelta(days=2), clock_out=START - timedelta(hours=40)),
    ]
    client.get_history.return_value = remote

    async def scenario():
        engine = await ready_engine(client)
        await engine.punch_in()
        await engine.punch_out()
        assert len(engine.history) == 1
        entries = await engine.fetch_history()
        return engine, entries

    engine, entries = asyncio.run(scenario())

    client.get_history.assert_awaited_once_with("42")
    assert entries == remote
    assert [record.id for record in engine.history] == ["r2", "r1"]
    assert engine.entries == tuple(remote)


def test_operations_require_initialize_and_are_refused_after_close():
    client = make_client()
    engine = make_engine(client)

    async def scenario():
        with pytest.raises(EngineNotReady):
            await engine.check_status()
        await engine.initialize()
        await engine.punch_in()
        engine.close()
        with pytest.raises(EngineNotReady):
            await engine.punch_out()
        with pytest.raises(EngineNotReady):
            await engine.initialize()

    asyncio.run(scenario())

    assert engine.current_session is None
    assert engine.history == ()


def test_elapsed_reports_running_duration():
    client = make_client()

    async def scenario():
        engine = await ready_engine(client)
        assert engine.elapsed() is None
        await engine.punch_in()
        return engine

    engine = asyncio.run(scenario())

    assert engine.elapsed(START + timedelta(hours=2)) == timedelta(hours=2)
