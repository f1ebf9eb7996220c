"""Data models for the Tempo worklog status agent."""

from dataclasses import dataclass
from datetime import datetime

DEFAULT_WARNING_THRESHOLD_DAYS = 7


@dataclass(frozen=True)
class Credentials:
    """Jira/Tempo connection settings loaded from the credential store."""

    api_token: str
    jira_base_url: str
    account_id: str = ""  # Empty: resolve from /myself
    warning_threshold_days: int = DEFAULT_WARNING_THRESHOLD_DAYS

    @classmethod
    def from_config(cls, config: dict) -> "Credentials":
        jira = config["jira"]
        return cls(
            api_token=jira["api_token"],
            jira_base_url=jira["base_url"],
            account_id=jira.get("account_id") or "",
            warning_threshold_days=config.get(
                "warning_threshold_days", DEFAULT_WARNING_THRESHOLD_DAYS
            ),
        )

    def to_config(self) -> dict:
        return {
            "jira": {
                "base_url": self.jira_base_url,
                "api_token": self.api_token,
                "account_id": self.account_id,
            },
            "warning_threshold_days": self.warning_threshold_days,
        }


@dataclass(frozen=True)
class WorklogIssue:
    """The Jira issue a worklog was booked on."""

    key: str
    summary: str | None = None


@dataclass(frozen=True)
class Worklog:
    """A worklog entry from Tempo Timesheets."""

    started_at: datetime
    time_spent_seconds: int
    comment: str | None = None
    issue: WorklogIssue | None = None

    @classmethod
    def from_api(cls, data: dict) -> "Worklog":
        """Build a worklog from a Tempo API entry.

        Raises:
            KeyError: If ``dateStarted`` or ``timeSpentSeconds`` is missing.
            ValueError: If ``dateStarted`` is not an ISO timestamp.
        """
        issue = data.get("issue")
        return cls(
            started_at=datetime.fromisoformat(data["dateStarted"]),
            time_spent_seconds=max(int(data["timeSpentSeconds"]), 0),
            comment=data.get("comment"),
            issue=WorklogIssue(issue["key"], issue.get("summary")) if issue else None,
        )

    def days_ago(self, now: datetime) -> int:
        """Whole days elapsed between the worklog start and ``now``."""
        if self.started_at.tzinfo is not None and now.tzinfo is None:
            now = now.astimezone()
        elif self.started_at.tzinfo is None and now.tzinfo is not None:
            now = now.astimezone().replace(tzinfo=None)
        return max((now - self.started_at).days, 0)


@dataclass(frozen=True)
class UserInfo:
    """The authenticated Jira user (from /rest/api/2/myself)."""

    name: str | None = None
    key: str | None = None
    email_address: str | None = None

    @property
    def account_id(self) -> str | None:
        # Tempo Timesheets on Jira Server looks users up by username
        return self.name

    @classmethod
    def from_api(cls, data: dict) -> "UserInfo":
        return cls(
            name=data.get("name"),
            key=data.get("key"),
            email_address=data.get("emailAddress"),
        )


@dataclass(frozen=True)
class EngineState:
    """Published state of the worklog state engine.

    Replaced as a whole on every commit; observers only ever see complete
    snapshots.
    """

    days_since_last_worklog: int | None = None
    latest_worklog: Worklog | None = None
    is_loading: bool = False
    error_message: str | None = None
    has_credentials: bool = False
    warning_threshold_days: int = DEFAULT_WARNING_THRESHOLD_DAYS
