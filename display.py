"""Plain-text rendering of the worklog status."""

import status
from models import EngineState
from utils import format_date, format_time_spent


def render_status_line(state: EngineState) -> str:
    """One-line status bar equivalent: title and tooltip."""
    if state.error_message:
        return f"❌  {state.error_message}"
    days = state.days_since_last_worklog
    title = status.status_bar_title(days, state.warning_threshold_days)
    return f"{title}  {status.status_bar_tooltip(days)}"


def render_detail(state: EngineState) -> list[str]:
    """Lines of the detail view, most specific condition first."""
    lines = ["Tempo Status"]

    if state.is_loading:
        lines.append("Loading...")
    elif state.error_message:
        lines.append(state.error_message)
    elif state.latest_worklog is not None:
        worklog = state.latest_worklog
        days = state.days_since_last_worklog
        emoji = status.status_emoji(days, state.warning_threshold_days)

        if days is not None:
            lines.append(f"{emoji} {status.days_ago_text(days)} ago")
        if worklog.issue:
            lines.append(f"  {worklog.issue.key}")
            if worklog.issue.summary:
                lines.append(f"  {worklog.issue.summary}")
        lines.append(f"  Time spent: {format_time_spent(worklog.time_spent_seconds)}")
        lines.append(f"  Date: {format_date(worklog.started_at)}")
        if worklog.comment:
            lines.append(f"  Comment: {worklog.comment}")
    elif not state.has_credentials:
        lines.append("No credentials configured")
    else:
        lines.append(status.UNKNOWN_TOOLTIP)

    return lines
