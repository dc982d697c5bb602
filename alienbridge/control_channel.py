# alienbridge/control_channel.py
"""
Control channel to an Alien RFID reader (plain TCP, default port 20000).

Protocol
--------
    reader: "Username>"          bridge: "<username>\\n"
    reader: "Password>"          bridge: "<password>\\n"
    reader: "Alien>"             (signed in; ready for commands)

    bridge: "<command>\\r\\n"
    reader: "<command>\\r\\n"      echo line
            "<line>\\r\\n" ...     zero or more response lines
            "\\r\\n"                blank separator
            "Alien>"               prompt; the response is complete

There are no length fields. Every transition is driven by spotting a marker
substring in the bytes buffered so far, which is why all reads go through a
LineFramer rather than being treated one chunk at a time.

Exactly one request (the login or one command) may be outstanding. A second
run_command() while one is pending fails immediately with NotReadyError; it
is never queued.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from alienbridge.config_loader import ReaderConfig
from alienbridge.errors import (
    AlreadyConnectedError,
    MalformedResponseError,
    NotReadyError,
    ReaderConnectionError,
    ReaderTimeoutError,
    RequestCancelledError,
)
from alienbridge.line_framer import LineFramer

USERNAME_PROMPT = "Username>"
PASSWORD_PROMPT = "Password>"
COMMAND_PROMPT = "Alien>"


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    AWAITING_USERNAME_PROMPT = "awaiting_username_prompt"
    AWAITING_PASSWORD_PROMPT = "awaiting_password_prompt"
    AWAITING_FIRST_PROMPT = "awaiting_first_prompt"
    READY = "ready"
    AWAITING_COMMAND_RESPONSE = "awaiting_command_response"


# ------------------------------------------------------------
# State machine (pure; no sockets)
# ------------------------------------------------------------

@dataclass(frozen=True)
class Transition:
    """
    Outcome of feeding buffered text to the state machine.

    Attributes:
        state: next state
        clear: discard the buffered text
        capture: drain buffered lines into the response buffer
        send: text to write to the reader, if any
        complete: the pending request (login or command) is finished
        rejected: the reader answered the password with a fresh "Username>"
    """
    state: ConnectionState
    clear: bool = False
    capture: bool = False
    send: Optional[str] = None
    complete: bool = False
    rejected: bool = False


def advance(state: ConnectionState, framer: LineFramer, *, username: str, password: str) -> Transition:
    """Decide the next step for `state` given everything buffered in `framer`."""
    S = ConnectionState
    if state is S.AWAITING_USERNAME_PROMPT:
        if framer.contains_marker(USERNAME_PROMPT):
            return Transition(S.AWAITING_PASSWORD_PROMPT, clear=True, send=username + "\n")

    elif state is S.AWAITING_PASSWORD_PROMPT:
        if framer.contains_marker(PASSWORD_PROMPT):
            return Transition(S.AWAITING_FIRST_PROMPT, clear=True, send=password + "\n")

    elif state is S.AWAITING_FIRST_PROMPT:
        if framer.contains_marker(COMMAND_PROMPT):
            return Transition(S.READY, clear=True, complete=True)
        if framer.contains_marker(USERNAME_PROMPT):
            # bad credentials: the reader prints an error and starts over
            return Transition(S.DISCONNECTED, clear=True, rejected=True)

    elif state is S.READY:
        # nothing pending; the reader is chatty, keep what it says until the next command
        return Transition(S.READY, capture=True)

    elif state is S.AWAITING_COMMAND_RESPONSE:
        if framer.contains_marker(COMMAND_PROMPT):
            return Transition(S.READY, capture=True, complete=True)

    return Transition(state)


def frame_response(lines: List[str]) -> List[str]:
    """
    Strip the protocol framing from a captured command response.

    The reader repeats the command as the first line and ends with a blank
    separator line followed by the prompt line, so the payload is
    lines[1:-2]. Anything shorter than those three framing lines is not a
    response we understand.
    """
    if len(lines) < 3:
        raise MalformedResponseError(
            f"response has {len(lines)} line(s); need echo, separator and prompt", lines
        )
    return lines[1:-2]


# ------------------------------------------------------------
# Channel
# ------------------------------------------------------------

class _ControlProtocol(asyncio.Protocol):
    def __init__(self, channel: "ControlChannel"):
        self._channel = channel
        self.transport: Optional[asyncio.Transport] = None

    def connection_made(self, transport):
        self.transport = transport
        self._channel._on_connect(transport)

    def data_received(self, data: bytes):
        self._channel._on_data(data)

    def connection_lost(self, exc):
        self._channel._on_connection_lost(self.transport, exc)


class ControlChannel:
    """
    One TCP session with the reader: login handshake, then serialized commands.

    Example:
        >>> channel = ControlChannel(ReaderConfig(address="10.0.0.20"))
        >>> await channel.connect()
        >>> await channel.run_command("get ReaderVersion")
        ['ReaderVersion = ...']
        >>> channel.disconnect()
    """

    def __init__(self, cfg: ReaderConfig, *, log: Optional[logging.Logger] = None):
        self.cfg = cfg
        self._log = log or logging.getLogger("alien.control")

        self._state = ConnectionState.DISCONNECTED
        self._transport: Optional[asyncio.Transport] = None
        self._framer = LineFramer(cfg.encoding)
        self._response: List[str] = []
        self._pending: Optional[asyncio.Future] = None

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is ConnectionState.READY and self._pending is None

    @property
    def local_address(self) -> Optional[str]:
        """Local IP the control socket is bound to (what the reader sees us as)."""
        if self._transport is None:
            return None
        sockname = self._transport.get_extra_info("sockname")
        return sockname[0] if sockname else None

    @property
    def unsolicited_lines(self) -> Tuple[str, ...]:
        """Lines the reader sent while no command was pending."""
        if self._state is not ConnectionState.READY:
            return ()
        return tuple(self._response)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket and sign in. Returns once the first "Alien>" prompt arrives."""
        if self._state is not ConnectionState.DISCONNECTED or self._pending is not None:
            raise AlreadyConnectedError(f"control channel already {self._state.value}")

        loop = asyncio.get_running_loop()
        fut = loop.create_future()
        self._pending = fut
        self._framer = LineFramer(self.cfg.encoding)
        self._response = []

        host, port = self.cfg.address, self.cfg.port
        timeout = self.cfg.login_timeout_s
        started = loop.time()
        self._log.info("connecting", extra={"host": host, "port": port})
        try:
            # the TCP handshake spends the same login budget as the prompts
            await asyncio.wait_for(loop.create_connection(lambda: _ControlProtocol(self), host, port), timeout)
        except asyncio.TimeoutError:
            self._log.warning("timeout", extra={"waiting_for": "connect", "timeout_s": timeout})
            err = ReaderTimeoutError(f"no connection to reader at {host}:{port} within {timeout}s")
            fut.cancel()
            self._teardown(err)
            raise err from None
        except OSError as e:
            if self._pending is fut:
                self._pending = None
            self._log.warning("connect_error", extra={"host": host, "port": port, "err": str(e)})
            raise ReaderConnectionError(f"cannot connect to reader at {host}:{port}: {e}") from e

        if timeout is not None:
            timeout = max(0.0, timeout - (loop.time() - started))
        await self._await_pending(fut, timeout, "login")
        self._log.info("signed_in", extra={"host": host, "port": port, "local": self.local_address})

    async def run_command(self, cmd: str) -> List[str]:
        """Send one command and return its response lines (echo and framing removed)."""
        if self._state is not ConnectionState.READY or self._pending is not None:
            raise NotReadyError(f"cannot run {cmd!r} while control channel is {self._state.value}")

        fut = asyncio.get_running_loop().create_future()
        self._pending = fut
        self._response = []
        self._framer.clear()
        self._state = ConnectionState.AWAITING_COMMAND_RESPONSE
        self._write(cmd + "\r\n")
        self._log.debug("command_sent", extra={"cmd": cmd})

        lines = await self._await_pending(fut, self.cfg.command_timeout_s, f"command {cmd!r}")
        self._log.debug("command_done", extra={"cmd": cmd, "lines": len(lines)})
        return lines

    def disconnect(self) -> None:
        """Close the socket and release any pending request with RequestCancelledError."""
        if (self._state is ConnectionState.DISCONNECTED
                and self._pending is None and self._transport is None):
            return
        self._log.info("disconnect", extra={"state": self._state.value})
        self._teardown(RequestCancelledError("control channel closed while a request was pending"))

    # -------------------------------------------------------------------------
    # Socket callbacks
    # -------------------------------------------------------------------------

    def _on_connect(self, transport: asyncio.Transport) -> None:
        if self._pending is None or self._state is not ConnectionState.DISCONNECTED:
            # torn down while the connect was in flight
            transport.close()
            return
        self._transport = transport
        self._state = ConnectionState.AWAITING_USERNAME_PROMPT

    def _on_data(self, data: bytes) -> None:
        self._framer.feed(data)
        prev = self._state
        step = advance(prev, self._framer, username=self.cfg.username, password=self.cfg.password)

        if step.rejected:
            self._log.warning("login_rejected", extra={"user": self.cfg.username, "text": self._framer.text})
            self._teardown(ReaderConnectionError(f"reader rejected the login for user {self.cfg.username!r}"))
            return

        if step.clear:
            self._framer.clear()
        if step.capture:
            lines = self._framer.drain_lines()
            self._response.extend(lines)
            if prev is ConnectionState.READY:
                self._log.debug("unsolicited", extra={"lines": lines})
        if step.send is not None:
            self._write(step.send)

        self._state = step.state
        if step.state is not prev:
            self._log.debug("state", extra={"from": prev.value, "to": step.state.value})
        if step.complete:
            self._complete(prev)

    def _on_connection_lost(self, transport, exc: Optional[BaseException]) -> None:
        if transport is None or transport is not self._transport:
            return
        if exc is not None:
            self._log.warning("connection_lost", extra={"state": self._state.value, "err": str(exc)})
        else:
            self._log.info("connection_closed", extra={"state": self._state.value})
        reason = f": {exc}" if exc else ""
        self._teardown(ReaderConnectionError(f"reader closed the control connection{reason}"))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _complete(self, prev: ConnectionState) -> None:
        fut, self._pending = self._pending, None
        lines, self._response = self._response, []

        if fut is None or fut.done():
            # caller gave up (cancelled) but the reader finished anyway
            self._log.debug("late_completion", extra={"state": prev.value})
            return

        if prev is ConnectionState.AWAITING_FIRST_PROMPT:
            fut.set_result(None)
            return
        try:
            fut.set_result(frame_response(lines))
        except MalformedResponseError as e:
            self._log.warning("malformed_response", extra={"lines": lines})
            fut.set_exception(e)

    async def _await_pending(self, fut: asyncio.Future, timeout: Optional[float], what: str):
        try:
            return await asyncio.wait_for(fut, timeout)
        except asyncio.TimeoutError:
            self._log.warning("timeout", extra={"waiting_for": what, "timeout_s": timeout})
            # the byte stream is now out of step with our state; start over
            self.disconnect()
            raise ReaderTimeoutError(f"reader did not finish {what} within {timeout}s") from None

    def _write(self, text: str) -> None:
        if self._transport is None:
            raise ReaderConnectionError("control channel has no open socket")
        self._transport.write(text.encode(self.cfg.encoding))

    def _teardown(self, exc: BaseException) -> None:
        transport, self._transport = self._transport, None
        if transport is not None and not transport.is_closing():
            transport.close()

        self._state = ConnectionState.DISCONNECTED
        self._framer.clear()
        self._response = []

        fut, self._pending = self._pending, None
        if fut is not None and not fut.done():
            fut.set_exception(exc)
