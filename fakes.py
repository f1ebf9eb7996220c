"""In-memory fakes of the credential store and worklog client for tests.

State is provided via constructor; calls are recorded for assertions.
"""

import threading

from clients import WorklogClient
from credentials import CredentialStore, NoStoredCredentials
from models import Credentials, Worklog


class FakeCredentialStore(CredentialStore):
    def __init__(
        self,
        credentials: Credentials | None = None,
        load_error: Exception | None = None,
        has_credentials: bool | None = None,
    ):
        self.credentials = credentials
        self.load_error = load_error
        # Defaults to "a credential record exists"
        self._has_credentials = has_credentials
        self.load_calls = 0

    def has_stored_credentials(self) -> bool:
        if self._has_credentials is not None:
            return self._has_credentials
        return self.credentials is not None

    def load_credentials(self) -> Credentials:
        self.load_calls += 1
        if self.load_error is not None:
            raise self.load_error
        if self.credentials is None:
            raise NoStoredCredentials()
        return self.credentials


class FakeWorklogClient(WorklogClient):
    """Returns canned results. ``gate`` (a threading.Event) holds fetches until set."""

    def __init__(
        self,
        worklog: Worklog | None = None,
        days: int | None = None,
        error: Exception | None = None,
        gate: threading.Event | None = None,
    ):
        self.worklog = worklog
        self.days = days
        self.error = error
        self.gate = gate
        self.fetch_calls: list[tuple] = []
        self.days_calls: list[tuple] = []

    def fetch_latest_worklog(self, api_token, jira_base_url, account_id=None):
        self.fetch_calls.append((api_token, jira_base_url, account_id))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.worklog

    def days_since_last_worklog(self, api_token, jira_base_url, account_id=None):
        self.days_calls.append((api_token, jira_base_url, account_id))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        return self.days
