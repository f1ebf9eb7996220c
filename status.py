"""Healthy / warning / stale classification of the days since the last worklog."""

from enum import Enum


class Status(Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    STALE = "stale"
    UNKNOWN = "unknown"


class StatusColor(Enum):
    GREEN = "green"
    ORANGE = "orange"
    RED = "red"
    SECONDARY = "secondary"


EMOJI = {
    Status.HEALTHY: "✅",
    Status.WARNING: "⏰",
    Status.STALE: "🚨",
    Status.UNKNOWN: "",
}

COLORS = {
    Status.HEALTHY: StatusColor.GREEN,
    Status.WARNING: StatusColor.ORANGE,
    Status.STALE: StatusColor.RED,
    Status.UNKNOWN: StatusColor.SECONDARY,
}

UNKNOWN_TITLE = "⏱️"
UNKNOWN_TOOLTIP = "No worklog data available"


def classify(days: int | None, threshold: int) -> Status:
    """Bucket boundaries: up to ``threshold`` is healthy, one day over warns."""
    if days is None:
        return Status.UNKNOWN
    if days <= threshold:
        return Status.HEALTHY
    if days <= threshold + 1:
        return Status.WARNING
    return Status.STALE


def status_emoji(days: int | None, threshold: int) -> str:
    return EMOJI[classify(days, threshold)]


def status_color(days: int | None, threshold: int) -> StatusColor:
    return COLORS[classify(days, threshold)]


def days_ago_text(days: int) -> str:
    return f"{days} day" if days == 1 else f"{days} days"


def status_bar_title(days: int | None, threshold: int) -> str:
    if days is None:
        return UNKNOWN_TITLE
    return f"{status_emoji(days, threshold)} {days}"


def status_bar_tooltip(days: int | None) -> str:
    if days is None:
        return UNKNOWN_TOOLTIP
    return f"Last worklog: {days_ago_text(days)} ago"
