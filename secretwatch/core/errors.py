from __future__ import annotations


class SecretWatchError(Exception):
    """Base class for all errors raised by secretwatch."""


class StorageError(SecretWatchError):
    """A durable read or write failed; the mutation must be assumed not applied."""


class FetchError(SecretWatchError):
    """A remote script body could not be retrieved."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class InstrumentationError(SecretWatchError):
    """Attaching to or detaching from the instrumentation channel failed."""


class MalformedEventError(SecretWatchError):
    """An observer event is missing a required field."""


class ConfigError(SecretWatchError):
    pass
