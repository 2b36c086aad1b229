import asyncio

import httpx
import pytest

from auth.errors import RefreshFailed
from auth.models import TokenResponse
from auth.refresh import RefreshCoordinator
from auth.storage import MemoryStorage, SessionStore
from tests.auth_helpers import FakeClock, TimerRecorder, make_config, make_session


class RefreshRecorder:
    def __init__(self, *, error: Exception | None = None, gate: asyncio.Event | None = None):
        self.calls: list[str] = []
        self.error = error
        self.gate = gate
        self.tokens = TokenResponse(access_token="access-2", refresh_token="refresh-2", expires_in=3600)

    async def __call__(self, config, refresh_token, *, client=None):
        del config, client
        self.calls.append(refresh_token)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.tokens


async def _build_coordinator(*, session=None, recorder=None):
    clock = FakeClock()
    timers = TimerRecorder()
    sessions = SessionStore(MemoryStorage())
    if session is not None:
        await sessions.save(session)
    recorder = recorder or RefreshRecorder()
    coordinator = RefreshCoordinator(
        make_config(),
        sessions=sessions,
        clock=clock,
        call_later=timers,
        refresh_token_fn=recorder,
    )
    expired: list[bool] = []
    coordinator.add_session_expired_listener(lambda: expired.append(True))
    return coordinator, sessions, clock, timers, recorder, expired


@pytest.mark.asyncio
async def test_schedule_refresh_fires_before_expiry() -> None:
    clock = FakeClock()
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=make_session(expires_at=clock.ms() + 3600 * 1000)
    )

    delay = await coordinator.schedule_refresh()

    assert delay == 3_300_000
    assert coordinator.scheduled_delay_ms == 3_300_000
    assert [handle.delay for handle in timers.active] == [3300.0]


@pytest.mark.asyncio
async def test_schedule_refresh_without_expiry_is_noop() -> None:
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=make_session(expires_at=None)
    )

    assert await coordinator.schedule_refresh() is None
    assert timers.handles == []


@pytest.mark.asyncio
async def test_rescheduling_cancels_previous_timer() -> None:
    clock = FakeClock()
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=make_session(expires_at=clock.ms() + 3600 * 1000)
    )

    await coordinator.schedule_refresh()
    await coordinator.schedule_refresh()

    assert len(timers.handles) == 2
    assert timers.handles[0].cancelled is True
    assert len(timers.active) == 1


@pytest.mark.asyncio
async def test_schedule_refresh_inside_buffer_refreshes_now() -> None:
    clock = FakeClock()
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=make_session(expires_at=clock.ms() + 60 * 1000)
    )

    assert await coordinator.schedule_refresh() == 0
    await coordinator.wait_for_background()

    assert recorder.calls == ["refresh-1"]
    assert (await sessions.load()).access_token == "access-2"


@pytest.mark.asyncio
async def test_timer_triggers_refresh_and_rearms() -> None:
    clock = FakeClock()
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=make_session(expires_at=clock.ms() + 3600 * 1000)
    )
    await coordinator.schedule_refresh()

    clock.advance(3300)
    timers.fire()
    await coordinator.wait_for_background()

    session = await sessions.load()
    assert session.access_token == "access-2"
    assert session.refresh_token == "refresh-2"
    assert session.expires_at == clock.ms() + 3600 * 1000
    assert [handle.delay for handle in timers.active] == [3300.0]


@pytest.mark.asyncio
async def test_concurrent_refreshes_share_one_request() -> None:
    gate = asyncio.Event()
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=make_session(expires_at=FakeClock().ms() + 3600 * 1000),
        recorder=RefreshRecorder(gate=gate),
    )

    waiters = [asyncio.create_task(coordinator.refresh()) for _ in range(5)]
    await asyncio.sleep(0)
    assert coordinator.is_refreshing is True
    gate.set()
    results = await asyncio.gather(*waiters)

    assert results == [True] * 5
    assert recorder.calls == ["refresh-1"]
    assert coordinator.is_refreshing is False


@pytest.mark.asyncio
async def test_token_refreshed_listener_receives_session() -> None:
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=make_session(expires_at=FakeClock().ms() + 3600 * 1000)
    )
    refreshed = []
    coordinator.add_token_refreshed_listener(refreshed.append)

    assert await coordinator.refresh() is True

    assert [session.access_token for session in refreshed] == ["access-2"]
    assert refreshed[0].user.sub == "user-1"


@pytest.mark.asyncio
async def test_rejected_refresh_expires_session() -> None:
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=make_session(expires_at=FakeClock().ms() + 3600 * 1000),
        recorder=RefreshRecorder(error=RefreshFailed("Token refresh failed: status 400")),
    )
    await coordinator.schedule_refresh()

    assert await coordinator.refresh() is False

    assert await sessions.load() is None
    assert expired == [True]
    assert timers.active == []


@pytest.mark.asyncio
async def test_missing_refresh_token_expires_session() -> None:
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=make_session(refresh_token=None)
    )

    assert await coordinator.refresh() is False

    assert recorder.calls == []
    assert await sessions.load() is None
    assert expired == [True]


@pytest.mark.asyncio
async def test_network_error_keeps_session() -> None:
    session = make_session(expires_at=FakeClock().ms() + 3600 * 1000)
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=session,
        recorder=RefreshRecorder(error=httpx.ConnectError("unreachable")),
    )

    assert await coordinator.refresh() is False

    assert await sessions.load() == session
    assert expired == []


@pytest.mark.asyncio
async def test_expire_without_session_does_not_notify() -> None:
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator()

    await coordinator.expire_session()

    assert expired == []


@pytest.mark.asyncio
async def test_cancel_discards_in_flight_result() -> None:
    gate = asyncio.Event()
    session = make_session(expires_at=FakeClock().ms() + 3600 * 1000)
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=session,
        recorder=RefreshRecorder(gate=gate),
    )

    pending = asyncio.create_task(coordinator.refresh())
    await asyncio.sleep(0)
    coordinator.cancel()
    gate.set()

    assert await pending is False
    assert await sessions.load() == session
    assert timers.active == []


@pytest.mark.asyncio
async def test_cancelled_failure_does_not_expire_new_session() -> None:
    gate = asyncio.Event()
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=make_session(),
        recorder=RefreshRecorder(gate=gate, error=RefreshFailed()),
    )

    pending = asyncio.create_task(coordinator.refresh())
    await asyncio.sleep(0)
    coordinator.cancel()
    replacement = make_session(access_token="access-new")
    await sessions.save(replacement)
    gate.set()

    assert await pending is False
    assert await sessions.load() == replacement
    assert expired == []


@pytest.mark.asyncio
async def test_session_replaced_during_refresh_is_kept() -> None:
    gate = asyncio.Event()
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=make_session(),
        recorder=RefreshRecorder(gate=gate),
    )

    pending = asyncio.create_task(coordinator.refresh())
    await asyncio.sleep(0)
    replacement = make_session(access_token="access-other-tab")
    await sessions.save(replacement)
    gate.set()

    assert await pending is False
    assert await sessions.load() == replacement


@pytest.mark.asyncio
async def test_visibility_refreshes_overdue_token() -> None:
    clock = FakeClock()
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=make_session(expires_at=clock.ms() + 3600 * 1000)
    )
    await coordinator.schedule_refresh()

    # Suspended past expiry: the timer never fired.
    clock.advance(4000)
    await coordinator.on_visibility_change(True)

    assert recorder.calls == ["refresh-1"]
    assert (await sessions.load()).access_token == "access-2"
    assert [handle.delay for handle in timers.active] == [3300.0]


@pytest.mark.asyncio
async def test_visibility_reschedules_when_token_is_fresh() -> None:
    clock = FakeClock()
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=make_session(expires_at=clock.ms() + 3600 * 1000)
    )
    await coordinator.schedule_refresh()

    clock.advance(600)
    await coordinator.on_visibility_change(True)

    assert recorder.calls == []
    assert [handle.delay for handle in timers.active] == [2700.0]


@pytest.mark.asyncio
async def test_hidden_visibility_is_ignored() -> None:
    clock = FakeClock()
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=make_session(expires_at=clock.ms() + 3600 * 1000)
    )

    clock.advance(4000)
    await coordinator.on_visibility_change(False)

    assert recorder.calls == []
    assert timers.handles == []


@pytest.mark.asyncio
async def test_closed_client_error_keeps_session() -> None:
    session = make_session(expires_at=FakeClock().ms() + 3600 * 1000)
    coordinator, sessions, clock, timers, recorder, expired = await _build_coordinator(
        session=session,
        recorder=RefreshRecorder(
            error=RuntimeError("Cannot send a request, as the client has been closed.")
        ),
    )

    with pytest.raises(RuntimeError, match="client has been closed"):
        await coordinator.refresh()

    assert await sessions.load() == session
    assert expired == []
