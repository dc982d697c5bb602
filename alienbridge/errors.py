# alienbridge/errors.py
"""
Error taxonomy for the Alien reader bridge.

Everything raised by the bridge derives from AlienBridgeError so callers can
catch one base class. Socket-level failures also subclass the builtin
ConnectionError, and config failures subclass RuntimeError, matching how the
loader has always reported a broken config file.
"""

from __future__ import annotations

from typing import List, Optional


class AlienBridgeError(Exception):
    """Base class for all bridge errors."""


class AlreadyConnectedError(AlienBridgeError):
    """connect() called while the control channel is not DISCONNECTED."""


class NotReadyError(AlienBridgeError):
    """run_command() called while not READY (or a request is still outstanding)."""


class ReaderConnectionError(AlienBridgeError, ConnectionError):
    """Socket-level failure while connecting or while a request was pending."""


class RequestCancelledError(AlienBridgeError):
    """The pending request was released because the channel was torn down."""


class ReaderTimeoutError(AlienBridgeError, TimeoutError):
    """The reader did not reach the expected marker within the configured timeout."""


class MalformedResponseError(AlienBridgeError):
    """
    A command response was too short to hold the echo line, the blank
    separator and the prompt line.
    """

    def __init__(self, message: str, lines: Optional[List[str]] = None):
        super().__init__(message)
        self.lines = list(lines or [])


class SetupAbortedError(AlienBridgeError):
    """A setup command failed; the remaining commands were not sent."""

    def __init__(self, command: str, index: int, cause: BaseException):
        super().__init__(f"setup aborted at command #{index + 1} {command!r}: {cause}")
        self.command = command
        self.index = index


class ListenerError(AlienBridgeError):
    """The notification listener could not bind its port."""


class ConfigError(AlienBridgeError, RuntimeError):
    """Configuration file missing, unreadable or of the wrong shape."""
