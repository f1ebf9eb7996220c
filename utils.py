"""Utility functions for the Tempo worklog status agent."""

import json
import logging
import os
import sys
from datetime import datetime
from pathlib import Path

# File paths
CONFIG_ENV_VAR = "TEMPO_STATUS_CONFIG"
DEFAULT_CONFIG_FILE = Path.home() / ".config" / "tempo-status" / "config.json"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def config_path(override: str | None = None) -> Path:
    """Resolve the config file: explicit path, then $TEMPO_STATUS_CONFIG, then default."""
    if override:
        return Path(override).expanduser()
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        return Path(env).expanduser()
    return DEFAULT_CONFIG_FILE


def load_json(path: Path) -> dict:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def save_json(path: Path, data: dict) -> None:
    """Write JSON readable by the owner only (the file holds an API token)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def validate_config(config: dict) -> list[str]:
    """Validate config structure and return list of error messages.

    Returns:
        Empty list if valid, otherwise list of error messages.
    """
    if not isinstance(config, dict):
        return ["Config must be a JSON object"]

    errors = []

    jira = config.get("jira")
    if not isinstance(jira, dict):
        errors.append("Missing section 'jira'")
    else:
        for key in ["base_url", "api_token"]:
            if not jira.get(key):
                errors.append(f"Missing jira.{key}")
        account_id = jira.get("account_id")
        if account_id is not None and not isinstance(account_id, str):
            errors.append("jira.account_id must be a string")

    threshold = config.get("warning_threshold_days")
    if threshold is not None:
        # bool is an int subclass
        if not isinstance(threshold, int) or isinstance(threshold, bool) or threshold < 1:
            errors.append("warning_threshold_days must be an integer >= 1")

    return errors


def mask_token(token: str | None, visible: int = 4) -> str:
    """Show only the first few characters of a secret."""
    if not token:
        return "<empty>"
    return token[:visible] + "..."


def format_time_spent(seconds: int) -> str:
    """Format a duration as '2h 5m', or '45m' below one hour."""
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_date(value: datetime) -> str:
    """Medium date with short time, e.g. 'Jan 15, 2024 10:00'."""
    return value.strftime("%b %d, %Y %H:%M")


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """Configure root logging once for the command line entry point."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=handlers,
        force=True,
    )
    # Keep urllib3 connection chatter out of -v output
    logging.getLogger("urllib3").setLevel(logging.WARNING)
