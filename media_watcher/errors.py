from __future__ import annotations


class WatcherError(Exception):
    """Base class for errors raised by the watcher."""


class ConfigurationError(WatcherError):
    """Startup configuration is missing or malformed."""


class TransportError(WatcherError):
    """The Zabbix API could not be reached or returned an unreadable response."""


class RemoteAPIError(WatcherError):
    def __init__(self, code: int, message: str, data: str = "") -> None:
        self.code = int(code)
        self.message = message
        self.data = data
        super().__init__(f"API error ({self.code}): {message} - {data}")


class PersistenceError(WatcherError):
    """A state snapshot could not be read or written."""
