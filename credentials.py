"""Credential store for the Jira/Tempo connection settings."""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from models import Credentials
from utils import load_json, mask_token, save_json, validate_config

log = logging.getLogger(__name__)


class CredentialError(Exception):
    """Credentials could not be provided."""


class NoStoredCredentials(CredentialError):
    def __init__(self):
        super().__init__("No stored credentials found")


class DecodingFailed(CredentialError):
    """Stored credentials exist but cannot be read."""

    def __init__(self, cause: Exception | str):
        super().__init__(f"Failed to decode credentials: {cause}")
        self.cause = cause


class CredentialStore(ABC):
    """Holds zero or one credential record."""

    @abstractmethod
    def has_stored_credentials(self) -> bool:
        ...

    @abstractmethod
    def load_credentials(self) -> Credentials:
        """Load the stored credentials.

        Raises:
            NoStoredCredentials: If nothing is stored.
            DecodingFailed: If the stored record is unreadable or invalid.
        """
        ...


class JsonCredentialStore(CredentialStore):
    """Credential store backed by a JSON config file.

    Listeners registered with add_listener() are called after every
    save_credentials() and delete_credentials().
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._listeners: list[Callable[[], None]] = []

    def has_stored_credentials(self) -> bool:
        try:
            self.load_credentials()
        except CredentialError as e:
            log.debug("No usable credentials in %s: %s", self.path, e)
            return False
        return True

    def load_credentials(self) -> Credentials:
        if not self.path.exists():
            raise NoStoredCredentials()

        try:
            config = load_json(self.path)
        except json.JSONDecodeError as e:
            raise DecodingFailed(f"line {e.lineno}, column {e.colno}: {e.msg}") from e
        except OSError as e:
            raise DecodingFailed(e) from e

        errors = validate_config(config)
        if errors:
            raise DecodingFailed("; ".join(errors))

        credentials = Credentials.from_config(config)
        log.debug(
            "Loaded credentials: url=%s token=%s account=%s",
            credentials.jira_base_url,
            mask_token(credentials.api_token),
            credentials.account_id or "<auto>",
        )
        return credentials

    def save_credentials(self, credentials: Credentials) -> None:
        """Validate and persist credentials, then notify listeners.

        Raises:
            ValueError: If the credentials are incomplete.
        """
        config = credentials.to_config()
        errors = validate_config(config)
        if errors:
            raise ValueError("; ".join(errors))

        save_json(self.path, config)
        log.info("Credentials saved to %s", self.path)
        self._notify()

    def delete_credentials(self) -> None:
        self.path.unlink(missing_ok=True)
        log.info("Credentials deleted from %s", self.path)
        self._notify()

    def add_listener(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register a credentials-changed callback. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def fingerprint(self) -> tuple[int, int] | None:
        """(mtime_ns, size) of the config file, or None if it does not exist."""
        try:
            st = self.path.stat()
        except FileNotFoundError:
            return None
        return st.st_mtime_ns, st.st_size

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()
