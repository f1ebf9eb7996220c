"""API client for Jira and Tempo Timesheets."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Callable
from urllib.parse import urlsplit

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from models import UserInfo, Worklog
from utils import mask_token

log = logging.getLogger(__name__)

WORKLOG_WINDOW_DAYS = 60


class TempoError(Exception):
    """User-friendly Tempo API error."""

    default_message = "Tempo request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)


class MissingCredentials(TempoError):
    default_message = "Missing API credentials"


class InvalidURL(TempoError):
    default_message = "Invalid Jira URL"


class Unauthorized(TempoError):
    default_message = "Unauthorized - check your API token"


class Forbidden(TempoError):
    default_message = "Forbidden - check your account permissions"


class NotFound(TempoError):
    default_message = "Account not found - check your Account ID"


class NetworkError(TempoError):
    default_message = "Network error - check your internet connection"


class ApiError(TempoError):
    def __init__(self, status_code: int):
        super().__init__(f"API error (HTTP {status_code})")
        self.status_code = status_code


def _error_for_response(response: requests.Response) -> TempoError:
    """Convert HTTP errors to the client's error types."""
    errors = {
        401: Unauthorized,
        403: Forbidden,
        404: NotFound,
    }
    error_cls = errors.get(response.status_code)
    if error_cls:
        return error_cls()
    return ApiError(response.status_code)


def create_session() -> requests.Session:
    """requests.Session that retries transient gateway errors on GET."""
    retry = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=[502, 503, 504],
        allowed_methods=["GET"],
        raise_on_status=False,
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class WorklogClient(ABC):
    """Source of the user's latest worklog."""

    @abstractmethod
    def fetch_latest_worklog(
        self, api_token: str, jira_base_url: str, account_id: str | None = None
    ) -> Worklog | None:
        """Most recent worklog in the trailing window, or None.

        Raises:
            TempoError: On any request or credential problem.
        """
        ...

    @abstractmethod
    def days_since_last_worklog(
        self, api_token: str, jira_base_url: str, account_id: str | None = None
    ) -> int | None:
        """Days since the most recent worklog. Never raises; None on any error."""
        ...


class TempoClient(WorklogClient):
    """Client for the Jira and Tempo Timesheets REST APIs."""

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = 10,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session = session or create_session()
        self.timeout = timeout
        self.clock = clock

    def fetch_user_info(self, api_token: str, jira_base_url: str) -> UserInfo:
        """Get the user the API token belongs to."""
        data = self._get(api_token, self._url(jira_base_url, "rest/api/2/myself"))
        if not isinstance(data, dict):
            raise NetworkError()
        user = UserInfo.from_api(data)
        log.debug("Resolved Jira user: name=%s key=%s", user.name, user.key)
        return user

    def fetch_latest_worklog(
        self, api_token: str, jira_base_url: str, account_id: str | None = None
    ) -> Worklog | None:
        if not api_token:
            raise MissingCredentials()

        user = self.fetch_user_info(api_token, jira_base_url)
        identifier = account_id or user.name or user.key or ""
        if not identifier:
            raise MissingCredentials()

        return self._most_recent(self.fetch_worklogs(api_token, jira_base_url, identifier))

    def days_since_last_worklog(
        self, api_token: str, jira_base_url: str, account_id: str | None = None
    ) -> int | None:
        try:
            worklog = self.fetch_latest_worklog(api_token, jira_base_url, account_id)
        except TempoError as e:
            log.debug("Day count unavailable: %s", e)
            return None

        if worklog is None:
            log.debug("No worklog found in the last %d days", WORKLOG_WINDOW_DAYS)
            return None
        days = worklog.days_ago(self.clock())
        log.debug("Last worklog started %s (%d days ago)", worklog.started_at, days)
        return days

    def test_connection(
        self, api_token: str, account_id: str, jira_base_url: str
    ) -> Worklog | None:
        """Check settings before saving them. Raises TempoError when they do not work."""
        if not api_token:
            raise MissingCredentials()

        identifier = account_id
        if not identifier:
            identifier = self.fetch_user_info(api_token, jira_base_url).name or ""
        if not identifier:
            raise MissingCredentials()

        return self._most_recent(self.fetch_worklogs(api_token, jira_base_url, identifier))

    def fetch_worklogs(
        self, api_token: str, jira_base_url: str, identifier: str
    ) -> list[Worklog]:
        """Fetch the user's worklogs for the trailing window."""
        date_to = self.clock().date()
        date_from = date_to - timedelta(days=WORKLOG_WINDOW_DAYS)
        params = {
            "username": identifier,
            "dateFrom": date_from.isoformat(),
            "dateTo": date_to.isoformat(),
        }

        data = self._get(
            api_token, self._url(jira_base_url, "rest/tempo-timesheets/3/worklogs"), params
        )

        # Tempo answers with a bare list, some versions wrap it
        if isinstance(data, dict):
            data = data.get("results")
        if not isinstance(data, list):
            raise NetworkError()

        worklogs = []
        for entry in data:
            try:
                worklogs.append(Worklog.from_api(entry))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                log.warning("Skipping unreadable worklog entry: %s", e)

        log.debug("Fetched %d worklogs for %s (%s to %s)", len(worklogs), identifier, date_from, date_to)
        return worklogs

    @staticmethod
    def _most_recent(worklogs: list[Worklog]) -> Worklog | None:
        if not worklogs:
            return None
        return max(worklogs, key=lambda w: w.started_at)

    @staticmethod
    def _url(jira_base_url: str, path: str) -> str:
        parts = urlsplit(jira_base_url or "")
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise InvalidURL()
        base = jira_base_url if jira_base_url.endswith("/") else jira_base_url + "/"
        return base + path

    def _get(self, api_token: str, url: str, params: dict | None = None):
        log.debug("GET %s (token %s)", url, mask_token(api_token))
        try:
            r = self.session.get(
                url,
                headers={
                    "Authorization": f"Bearer {api_token}",
                    "Accept": "application/json",
                },
                params=params,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            log.warning("Request to %s failed: %s", url, e)
            raise NetworkError() from e

        if r.status_code != 200:
            log.warning("GET %s returned HTTP %d", url, r.status_code)
            raise _error_for_response(r)

        try:
            return r.json()
        except ValueError as e:
            raise NetworkError() from e
