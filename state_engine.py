"""
WorklogStateEngine: single source of truth for the latest worklog status.

All state reads and commits happen on one asyncio event loop. Blocking
collaborator calls (credential file, HTTP) run in worker threads; only
their results are committed back on the loop, one complete EngineState
at a time.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable

from clients import TempoError, WorklogClient
from credentials import CredentialError, CredentialStore, NoStoredCredentials
from models import DEFAULT_WARNING_THRESHOLD_DAYS, EngineState
from status import Status, StatusColor
import status as derived

log = logging.getLogger(__name__)

REFRESH_INTERVAL_SEC = 3600

Observer = Callable[[EngineState], None]


def error_message_for(error: Exception) -> str:
    """User-visible message for a failed refresh."""
    if isinstance(error, NoStoredCredentials):
        return "No credentials configured"
    if isinstance(error, CredentialError):
        detail = getattr(error, "cause", error)
        return f"Credential error: {detail}"
    if isinstance(error, TempoError):
        return f"Tempo error: {error}"
    return f"Error: {error}"


class WorklogStateEngine:
    """
    Owns the published EngineState and runs the refresh protocol.

    refresh() must be called from the event loop thread when it needs to
    start a fetch. At most one refresh is in flight; overlapping triggers
    join it. Clearing the data drops the result of the refresh in flight.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        worklog_client: WorklogClient,
        refresh_interval: float = REFRESH_INTERVAL_SEC,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._store = credential_store
        self._client = worklog_client
        self._refresh_interval = refresh_interval
        self._clock = clock
        self._state = EngineState()
        self._observers: list[Observer] = []
        self._in_flight: asyncio.Task | None = None
        # Bumped whenever displayed data is cleared; older refreshes do not commit
        self._generation = 0
        self._timer: asyncio.Task | None = None

    # ─── Published state ─────────────────────────────────────

    @property
    def state(self) -> EngineState:
        return self._state

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Call ``observer(state)`` after every state change. Returns an unsubscribe function."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _commit(self, **changes) -> None:
        new_state = replace(self._state, **changes)
        if new_state == self._state:
            return
        self._state = new_state
        for observer in list(self._observers):
            try:
                observer(new_state)
            except Exception:
                log.exception("State observer %r failed", observer)

    # ─── Derived status ──────────────────────────────────────

    @property
    def status(self) -> Status:
        return derived.classify(self._state.days_since_last_worklog, self._state.warning_threshold_days)

    @property
    def status_emoji(self) -> str:
        return derived.status_emoji(self._state.days_since_last_worklog, self._state.warning_threshold_days)

    @property
    def status_color(self) -> StatusColor:
        return derived.status_color(self._state.days_since_last_worklog, self._state.warning_threshold_days)

    @property
    def status_bar_title(self) -> str:
        return derived.status_bar_title(
            self._state.days_since_last_worklog, self._state.warning_threshold_days
        )

    @property
    def status_bar_tooltip(self) -> str:
        return derived.status_bar_tooltip(self._state.days_since_last_worklog)

    # ─── Refresh protocol ────────────────────────────────────

    @property
    def is_refreshing(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    def refresh(self) -> asyncio.Task | None:
        """
        Start a refresh, or join the one already running.

        Returns the task of the refresh in flight, or None when there are no
        credentials (in which case nothing changes).
        """
        if not self._state.has_credentials:
            log.debug("Refresh skipped: no credentials")
            return None
        if self.is_refreshing:
            log.debug("Refresh already in flight, joining it")
            return self._in_flight

        loop = asyncio.get_running_loop()
        self._commit(is_loading=True, error_message=None)
        self._in_flight = loop.create_task(self._run_refresh(self._generation))
        return self._in_flight

    async def _run_refresh(self, generation: int) -> EngineState:
        try:
            credentials = await asyncio.to_thread(self._store.load_credentials)
            account_id = credentials.account_id or None
            worklog, days = await asyncio.gather(
                asyncio.to_thread(
                    self._client.fetch_latest_worklog,
                    credentials.api_token,
                    credentials.jira_base_url,
                    account_id,
                ),
                asyncio.to_thread(
                    self._client.days_since_last_worklog,
                    credentials.api_token,
                    credentials.jira_base_url,
                    account_id,
                ),
            )
        except Exception as e:
            if self._superseded(generation):
                return self._state
            message = error_message_for(e)
            log.warning("Refresh failed: %s", message)
            changes = dict(
                is_loading=False,
                error_message=message,
                latest_worklog=None,
                days_since_last_worklog=None,
            )
            if isinstance(e, NoStoredCredentials):
                changes["has_credentials"] = False
            self._commit(**changes)
            return self._state

        if self._superseded(generation):
            return self._state

        if days is None and worklog is not None:
            days = worklog.days_ago(self._clock())

        log.info("Refresh OK | days since last worklog=%s", days)
        self._commit(
            is_loading=False,
            latest_worklog=worklog,
            days_since_last_worklog=days,
            error_message=None,
        )
        return self._state

    def _superseded(self, generation: int) -> bool:
        if generation == self._generation:
            return False
        log.debug("Dropping result of a refresh started before the data was cleared")
        return True

    def _abandon_refresh(self) -> None:
        # The fetch still runs to completion; its result is never committed
        self._generation += 1
        self._in_flight = None

    # ─── Credential check ────────────────────────────────────

    async def check_credentials_and_refresh(self) -> asyncio.Task | None:
        """
        Re-read the credential store, then refresh or clear the display.

        Store reads run in a worker thread. Returns the refresh task, or None
        when no credentials are stored.
        """
        has_credentials = await asyncio.to_thread(self._store.has_stored_credentials)

        if not has_credentials:
            log.info("No credentials stored, clearing worklog status")
            self._abandon_refresh()
            self._commit(
                has_credentials=False,
                days_since_last_worklog=None,
                latest_worklog=None,
                is_loading=False,
                error_message=None,
                warning_threshold_days=DEFAULT_WARNING_THRESHOLD_DAYS,
            )
            return None

        try:
            credentials = await asyncio.to_thread(self._store.load_credentials)
            threshold = credentials.warning_threshold_days
        except CredentialError as e:
            log.debug("Using default warning threshold: %s", e)
            threshold = DEFAULT_WARNING_THRESHOLD_DAYS

        self._commit(has_credentials=True, warning_threshold_days=threshold)
        return self.refresh()

    def clear_data(self) -> None:
        """Reset the displayed data. A refresh in flight will not bring it back."""
        self._abandon_refresh()
        self._commit(
            days_since_last_worklog=None,
            latest_worklog=None,
            is_loading=False,
            error_message=None,
            warning_threshold_days=DEFAULT_WARNING_THRESHOLD_DAYS,
        )

    # ─── Recurring refresh ───────────────────────────────────

    def start(self) -> None:
        """Refresh every ``refresh_interval`` seconds until stop()."""
        if self._timer is not None and not self._timer.done():
            return
        self._timer = asyncio.get_running_loop().create_task(self._tick())
        log.info("Refresh timer started (interval=%ds)", self._refresh_interval)

    async def stop(self) -> None:
        """Cancel the timer. An in-flight refresh is left to finish on its own."""
        timer, self._timer = self._timer, None
        if timer is None:
            return
        timer.cancel()
        try:
            await timer
        except asyncio.CancelledError:
            pass
        log.info("Refresh timer stopped")

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_interval)
            log.debug("Scheduled refresh")
            self.refresh()
