"""Tests for the worklog state engine.

Collaborators are in-memory fakes; no network or credential file is touched.
"""

import asyncio
import threading
from datetime import datetime

import pytest

from clients import ApiError, Forbidden, NetworkError, Unauthorized
from credentials import DecodingFailed, NoStoredCredentials
from fakes import FakeCredentialStore, FakeWorklogClient
from models import Credentials, EngineState, Worklog, WorklogIssue
from state_engine import WorklogStateEngine, error_message_for
from status import Status, StatusColor

CREDENTIALS = Credentials(
    api_token="test-token",
    jira_base_url="https://test.atlassian.net",
    account_id="test-account",
    warning_threshold_days=7,
)

WORKLOG = Worklog(
    started_at=datetime(2024, 1, 15, 10, 0),
    time_spent_seconds=3600,
    comment="Test work",
    issue=WorklogIssue(key="TEST-123", summary="Test issue"),
)


def make_engine(store=None, client=None, **kwargs) -> WorklogStateEngine:
    return WorklogStateEngine(
        store or FakeCredentialStore(CREDENTIALS),
        client or FakeWorklogClient(WORKLOG, 3),
        **kwargs,
    )


async def check_and_wait(engine: WorklogStateEngine) -> EngineState:
    task = await engine.check_credentials_and_refresh()
    if task is not None:
        await task
    return engine.state


async def wait_for_fetch(client: FakeWorklogClient):
    """Wait until the client has been called (credentials already loaded)."""
    for _ in range(200):
        if client.fetch_calls and client.days_calls:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("fetch never started")


def assert_success_xor_error(state: EngineState):
    has_error = state.error_message is not None
    has_data = state.latest_worklog is not None or state.days_since_last_worklog is not None
    assert not (has_error and has_data), state


# ---------------------------------------------------------------------------
# Initial state
# ---------------------------------------------------------------------------

class TestInitialState:

    def test_defaults(self):
        state = make_engine().state
        assert state.days_since_last_worklog is None
        assert state.latest_worklog is None
        assert state.is_loading is False
        assert state.error_message is None
        assert state.has_credentials is False
        assert state.warning_threshold_days == 7

    def test_unknown_status(self):
        engine = make_engine()
        assert engine.status == Status.UNKNOWN
        assert engine.status_bar_title == "⏱️"
        assert engine.status_bar_tooltip == "No worklog data available"


# ---------------------------------------------------------------------------
# Credential check
# ---------------------------------------------------------------------------

class TestCheckCredentials:

    @pytest.mark.asyncio
    async def test_valid_credentials(self):
        store = FakeCredentialStore(
            Credentials("test-token", "https://test.atlassian.net", "test-account", 5)
        )
        client = FakeWorklogClient(WORKLOG, 3)
        engine = make_engine(store, client)

        state = await check_and_wait(engine)

        assert state.has_credentials is True
        assert state.warning_threshold_days == 5
        assert state.latest_worklog.comment == "Test work"
        assert state.days_since_last_worklog == 3
        assert state.error_message is None
        assert state.is_loading is False

    @pytest.mark.asyncio
    async def test_without_credentials(self):
        client = FakeWorklogClient(WORKLOG, 3)
        engine = make_engine(FakeCredentialStore(None), client)

        task = await engine.check_credentials_and_refresh()

        assert task is None
        state = engine.state
        assert state.has_credentials is False
        assert state.days_since_last_worklog is None
        assert state.latest_worklog is None
        assert state.warning_threshold_days == 7
        assert client.fetch_calls == []
        assert client.days_calls == []

    @pytest.mark.asyncio
    async def test_credentials_removed_clears_data(self):
        store = FakeCredentialStore(
            Credentials("test-token", "https://test.atlassian.net", "", 3)
        )
        engine = make_engine(store)
        await check_and_wait(engine)
        assert engine.state.latest_worklog is not None

        store.credentials = None
        await check_and_wait(engine)

        state = engine.state
        assert state.has_credentials is False
        assert state.latest_worklog is None
        assert state.days_since_last_worklog is None
        assert state.error_message is None
        assert state.warning_threshold_days == 7

    @pytest.mark.asyncio
    async def test_store_read_off_the_event_loop_thread(self):
        loop_thread = threading.get_ident()
        threads = []

        class RecordingStore(FakeCredentialStore):
            def has_stored_credentials(self):
                threads.append(threading.get_ident())
                return super().has_stored_credentials()

            def load_credentials(self):
                threads.append(threading.get_ident())
                return super().load_credentials()

        engine = make_engine(RecordingStore(CREDENTIALS))
        await check_and_wait(engine)

        assert len(threads) == 3  # check, threshold, refresh
        assert loop_thread not in threads

    @pytest.mark.asyncio
    async def test_threshold_load_error_falls_back_to_default(self):
        store = FakeCredentialStore(
            has_credentials=True, load_error=DecodingFailed("bad json")
        )
        engine = make_engine(store)

        state = await check_and_wait(engine)

        assert state.has_credentials is True
        assert state.warning_threshold_days == 7
        # The refresh itself still reports the failure
        assert state.error_message == "Credential error: bad json"


# ---------------------------------------------------------------------------
# Refresh protocol
# ---------------------------------------------------------------------------

class TestRefresh:

    @pytest.mark.asyncio
    async def test_success(self):
        client = FakeWorklogClient(WORKLOG, 3)
        engine = make_engine(client=client)

        state = await check_and_wait(engine)

        assert state.latest_worklog == WORKLOG
        assert state.days_since_last_worklog == 3
        assert state.error_message is None
        assert state.is_loading is False
        assert client.fetch_calls == [("test-token", "https://test.atlassian.net", "test-account")]
        assert client.days_calls == client.fetch_calls

    @pytest.mark.asyncio
    async def test_empty_account_id_passed_as_none(self):
        store = FakeCredentialStore(Credentials("t", "https://jira.example.com"))
        client = FakeWorklogClient(None, None)
        engine = make_engine(store, client)

        state = await check_and_wait(engine)

        assert client.fetch_calls == [("t", "https://jira.example.com", None)]
        assert state.latest_worklog is None
        assert state.days_since_last_worklog is None
        assert state.error_message is None

    def test_no_credentials_is_a_noop(self):
        engine = make_engine()
        seen = []
        engine.subscribe(seen.append)
        before = engine.state

        assert engine.refresh() is None

        assert engine.state is before
        assert seen == []

    @pytest.mark.asyncio
    async def test_no_stored_credentials_on_load(self):
        store = FakeCredentialStore(has_credentials=True, load_error=NoStoredCredentials())
        client = FakeWorklogClient(WORKLOG, 3)
        engine = make_engine(store, client)

        state = await check_and_wait(engine)

        assert state.is_loading is False
        assert state.error_message == "No credentials configured"
        assert state.has_credentials is False
        assert client.fetch_calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error, message",
        [
            (Unauthorized(), "Tempo error: Unauthorized - check your API token"),
            (Forbidden(), "Tempo error: Forbidden - check your account permissions"),
            (NetworkError(), "Tempo error: Network error - check your internet connection"),
            (ApiError(500), "Tempo error: API error (HTTP 500)"),
            (RuntimeError("boom"), "Error: boom"),
        ],
    )
    async def test_client_errors(self, error, message):
        engine = make_engine(client=FakeWorklogClient(error=error))

        state = await check_and_wait(engine)

        assert state.is_loading is False
        assert state.error_message == message
        assert state.has_credentials is True

    @pytest.mark.asyncio
    async def test_failure_after_success_clears_old_data(self):
        client = FakeWorklogClient(WORKLOG, 3)
        engine = make_engine(client=client)
        await check_and_wait(engine)

        client.error = Unauthorized()
        await engine.refresh()

        state = engine.state
        assert state.error_message is not None
        assert state.latest_worklog is None
        assert state.days_since_last_worklog is None
        assert_success_xor_error(state)

    @pytest.mark.asyncio
    async def test_success_after_failure_clears_error(self):
        client = FakeWorklogClient(error=NetworkError())
        engine = make_engine(client=client)
        await check_and_wait(engine)
        assert engine.state.error_message is not None

        client.error = None
        client.worklog, client.days = WORKLOG, 2
        await engine.refresh()

        assert engine.state.error_message is None
        assert engine.state.days_since_last_worklog == 2
        assert_success_xor_error(engine.state)

    @pytest.mark.asyncio
    async def test_days_computed_from_worklog_when_count_missing(self):
        client = FakeWorklogClient(WORKLOG, None)
        engine = make_engine(client=client, clock=lambda: datetime(2024, 1, 18, 12, 0))

        state = await check_and_wait(engine)

        assert state.days_since_last_worklog == 3

    @pytest.mark.asyncio
    async def test_loading_keeps_previous_data_visible(self):
        gate = threading.Event()
        gate.set()
        client = FakeWorklogClient(WORKLOG, 3, gate=gate)
        engine = make_engine(client=client)
        await check_and_wait(engine)

        gate.clear()
        client.days = 4
        task = engine.refresh()

        state = engine.state
        assert state.is_loading is True
        assert state.error_message is None
        assert state.latest_worklog == WORKLOG
        assert state.days_since_last_worklog == 3

        gate.set()
        await task
        assert engine.state.is_loading is False
        assert engine.state.days_since_last_worklog == 4


# ---------------------------------------------------------------------------
# Overlapping triggers
# ---------------------------------------------------------------------------

class TestOverlap:

    @pytest.mark.asyncio
    async def test_second_trigger_joins_in_flight_refresh(self):
        gate = threading.Event()
        client = FakeWorklogClient(WORKLOG, 3, gate=gate)
        engine = make_engine(client=client)

        first = await engine.check_credentials_and_refresh()
        second = engine.refresh()
        third = await engine.check_credentials_and_refresh()

        assert first is second is third
        assert engine.is_refreshing

        gate.set()
        await first

        assert len(client.fetch_calls) == 1
        assert len(client.days_calls) == 1
        assert not engine.is_refreshing

    @pytest.mark.asyncio
    async def test_credentials_removed_during_refresh(self):
        gate = threading.Event()
        store = FakeCredentialStore(CREDENTIALS)
        client = FakeWorklogClient(WORKLOG, 3, gate=gate)
        engine = make_engine(store, client)

        in_flight = await engine.check_credentials_and_refresh()
        await wait_for_fetch(client)

        store.credentials = None
        assert await engine.check_credentials_and_refresh() is None

        gate.set()
        await in_flight

        state = engine.state
        assert state.has_credentials is False
        assert state.latest_worklog is None
        assert state.days_since_last_worklog is None
        assert state.error_message is None
        assert state.is_loading is False

    @pytest.mark.asyncio
    async def test_failure_after_credentials_removed_is_dropped(self):
        gate = threading.Event()
        store = FakeCredentialStore(CREDENTIALS)
        client = FakeWorklogClient(error=Unauthorized(), gate=gate)
        engine = make_engine(store, client)

        in_flight = await engine.check_credentials_and_refresh()
        await wait_for_fetch(client)

        store.credentials = None
        await engine.check_credentials_and_refresh()
        gate.set()
        await in_flight

        assert engine.state.error_message is None
        assert engine.state.has_credentials is False

    @pytest.mark.asyncio
    async def test_clear_data_during_refresh(self):
        gate = threading.Event()
        client = FakeWorklogClient(WORKLOG, 3, gate=gate)
        engine = make_engine(client=client)

        in_flight = await engine.check_credentials_and_refresh()
        await wait_for_fetch(client)

        engine.clear_data()
        assert engine.state.is_loading is False
        assert not engine.is_refreshing

        gate.set()
        await in_flight

        state = engine.state
        assert state.latest_worklog is None
        assert state.days_since_last_worklog is None
        assert state.has_credentials is True

        # The next refresh fetches again instead of joining the dropped one
        await engine.refresh()
        assert len(client.fetch_calls) == 2
        assert engine.state.days_since_last_worklog == 3

    @pytest.mark.asyncio
    async def test_new_refresh_after_completion(self):
        client = FakeWorklogClient(WORKLOG, 3)
        engine = make_engine(client=client)

        first = await engine.check_credentials_and_refresh()
        await first
        second = engine.refresh()
        await second

        assert first is not second
        assert len(client.fetch_calls) == 2


# ---------------------------------------------------------------------------
# Observers
# ---------------------------------------------------------------------------

class TestObservers:

    @pytest.mark.asyncio
    async def test_notified_with_complete_snapshots(self):
        engine = make_engine()
        seen: list[EngineState] = []
        engine.subscribe(seen.append)

        await check_and_wait(engine)

        assert seen[-1] == engine.state
        loading = [s for s in seen if s.is_loading]
        assert loading and all(s.error_message is None for s in loading)
        for state in seen:
            if not state.is_loading and state.latest_worklog is not None:
                assert state.days_since_last_worklog == 3

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_block_others(self):
        engine = make_engine()

        def broken(state):
            raise ValueError("observer bug")

        seen = []
        engine.subscribe(broken)
        engine.subscribe(seen.append)

        await check_and_wait(engine)

        assert seen[-1].days_since_last_worklog == 3

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        engine = make_engine(FakeCredentialStore(None))
        seen = []
        unsubscribe = engine.subscribe(seen.append)
        unsubscribe()
        unsubscribe()  # second call is harmless

        await engine.check_credentials_and_refresh()
        engine.clear_data()

        assert seen == []


# ---------------------------------------------------------------------------
# clear_data
# ---------------------------------------------------------------------------

class TestClearData:

    @pytest.mark.asyncio
    async def test_resets_display_fields(self):
        store = FakeCredentialStore(
            Credentials("test-token", "https://test.atlassian.net", "", 3)
        )
        engine = make_engine(store)
        await check_and_wait(engine)

        engine.clear_data()

        state = engine.state
        assert state.days_since_last_worklog is None
        assert state.latest_worklog is None
        assert state.error_message is None
        assert state.warning_threshold_days == 7
        assert state.has_credentials is True

    def test_idempotent(self):
        engine = make_engine()
        engine.clear_data()
        once = engine.state
        engine.clear_data()
        assert engine.state == once


# ---------------------------------------------------------------------------
# Derived accessors
# ---------------------------------------------------------------------------

class TestDerivedAccessors:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "days, status, emoji, color",
        [
            (6, Status.HEALTHY, "✅", StatusColor.GREEN),
            (7, Status.HEALTHY, "✅", StatusColor.GREEN),
            (8, Status.WARNING, "⏰", StatusColor.ORANGE),
            (9, Status.STALE, "🚨", StatusColor.RED),
        ],
    )
    async def test_follow_state(self, days, status, emoji, color):
        engine = make_engine(client=FakeWorklogClient(WORKLOG, days))
        await check_and_wait(engine)

        assert engine.status == status
        assert engine.status_emoji == emoji
        assert engine.status_color == color
        assert engine.status_bar_title == f"{emoji} {days}"
        assert engine.status_bar_tooltip == f"Last worklog: {days} days ago"


# ---------------------------------------------------------------------------
# Recurring refresh
# ---------------------------------------------------------------------------

class TestTimer:

    @pytest.mark.asyncio
    async def test_refreshes_periodically(self):
        client = FakeWorklogClient(WORKLOG, 3)
        engine = make_engine(client=client, refresh_interval=0.01)
        await check_and_wait(engine)

        engine.start()
        engine.start()  # already running
        await asyncio.sleep(0.2)
        await engine.stop()
        if engine.is_refreshing:
            await engine.refresh()

        calls = len(client.fetch_calls)
        assert calls >= 3  # initial check + at least two ticks
        await asyncio.sleep(0.05)
        assert len(client.fetch_calls) == calls

    @pytest.mark.asyncio
    async def test_timer_without_credentials_does_nothing(self):
        client = FakeWorklogClient(WORKLOG, 3)
        engine = make_engine(FakeCredentialStore(None), client, refresh_interval=0.01)

        engine.start()
        await asyncio.sleep(0.05)
        await engine.stop()

        assert client.fetch_calls == []

    @pytest.mark.asyncio
    async def test_stop_without_start(self):
        await make_engine().stop()


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

class TestErrorMessages:

    def test_decoding_failed_uses_cause(self):
        assert error_message_for(DecodingFailed("line 1")) == "Credential error: line 1"

    def test_no_stored_credentials(self):
        assert error_message_for(NoStoredCredentials()) == "No credentials configured"
