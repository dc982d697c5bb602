# alienbridge/notification_listener.py
# -----------------------------------------------------------------------------
# Reader → bridge notification channel
#
# With NotifyMode=on the reader opens its own TCP connection to us (the
# NotifyAddress set during setup, default port 20001) and pushes free-form
# text: custom-format tag lines plus "#Alien ..." headers, comment lines and
# "(No Tags)" heartbeats. Every inbound data event becomes exactly one call to
# the sink, even when every line was noise, so the sink can advance its own
# timeout bookkeeping.
#
# Each connection has its own LineFramer; connections share nothing with each
# other or with the control channel.
# -----------------------------------------------------------------------------

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import List, Optional, Set

from alienbridge.config_loader import ListenerConfig
from alienbridge.errors import ListenerError
from alienbridge.line_framer import LineFramer
from alienbridge.notification_sink import NotificationSink

MIN_LINE_LEN = 3  # keep lines strictly longer than this


def keep_notification_line(line: str) -> bool:
    return (
        not line.startswith("#")
        and "#Alien" not in line
        and "No Tags" not in line
        and len(line) > MIN_LINE_LEN
    )


def filter_notification_lines(lines: List[str]) -> List[str]:
    """Drop comments, reader headers, "No Tags" heartbeats and short fragments; keep order."""
    return [line for line in lines if keep_notification_line(line)]


class NotificationListener:
    def __init__(
        self,
        cfg: ListenerConfig,
        sink: NotificationSink,
        *,
        log: Optional[logging.Logger] = None,
    ):
        self.cfg = cfg
        self.sink = sink
        self._log = log or logging.getLogger("alien.notify")

        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: Set[asyncio.StreamWriter] = set()
        self._tasks: Set[asyncio.Task] = set()

        # diagnostic only
        self.events_total = 0
        self.lines_total = 0

    # -------------------------------------------------------------------------
    # Lifecycle Management
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._server is not None

    @property
    def bound_port(self) -> Optional[int]:
        """Actual listening port (useful when configured with port 0)."""
        if not self._server or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Bind and start accepting reader connections. No-op if already running."""
        if self._server:
            return
        try:
            self._server = await asyncio.start_server(self._handle_client, self.cfg.host, self.cfg.port)
        except OSError as e:
            self._log.error("notify_bind_error", extra={"host": self.cfg.host, "port": self.cfg.port, "err": str(e)})
            raise ListenerError(f"cannot listen on {self.cfg.host}:{self.cfg.port}: {e}") from e
        self._log.info("notify_listening", extra={"host": self.cfg.host, "port": self.bound_port})

    async def stop(self) -> None:
        """Stop accepting and close every accepted connection. Safe to call when stopped."""
        if not self._server:
            return
        server, self._server = self._server, None
        server.close()

        for writer in list(self._writers):
            writer.close()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await server.wait_closed()
        self._log.info("notify_stopped", extra={"events": self.events_total, "lines": self.lines_total})

    # -------------------------------------------------------------------------
    # Data path
    # -------------------------------------------------------------------------

    def process_chunk(self, framer: LineFramer, chunk: bytes) -> List[str]:
        """
        Turn one inbound data event into one sink call. Returns the batch
        handed to the sink (possibly empty).
        """
        self.events_total += 1
        if self.cfg.progress_every and self.events_total % self.cfg.progress_every == 0:
            self._log.info("notify_progress", extra={"events": self.events_total, "lines": self.lines_total})

        framer.feed(chunk)
        # a line cut by the read boundary waits in the framer for its newline
        return self._emit(framer.drain_complete_lines())

    def flush(self, framer: LineFramer) -> Optional[List[str]]:
        """
        Hand an unterminated tail to the sink once the reader has hung up.
        Returns None when nothing was held back.
        """
        if not framer.text:
            return None
        return self._emit(framer.drain_lines())

    def _emit(self, lines: List[str]) -> List[str]:
        batch = filter_notification_lines(lines)
        self.lines_total += len(batch)
        for line in batch:
            self._log.debug("notify_line", extra={"line": line})

        # the batch may be empty; the sink still needs the tick
        self.sink.process_notifications(batch)
        return batch

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = writer.get_extra_info("peername")
        task = asyncio.current_task()
        self._writers.add(writer)
        if task is not None:
            self._tasks.add(task)
        self._log.info("reader_connected", extra={"peer": peer})

        framer = LineFramer(self.cfg.encoding)
        try:
            while True:
                chunk = await reader.read(self.cfg.read_size)
                if not chunk:
                    try:
                        self.flush(framer)
                    except Exception:
                        self._log.exception("sink_error", extra={"peer": peer})
                    break
                try:
                    self.process_chunk(framer, chunk)
                except Exception:
                    # a broken sink must not take the connection down
                    self._log.exception("sink_error", extra={"peer": peer})
        except OSError as e:
            self._log.warning("reader_connection_error", extra={"peer": peer, "err": str(e)})
        finally:
            self._writers.discard(writer)
            if task is not None:
                self._tasks.discard(task)
            writer.close()
            self._log.info("reader_disconnected", extra={"peer": peer})
