# alienbridge/notification_sink.py
"""
Where notification batches go once the listener has filtered them.

The listener calls process_notifications(lines) once per inbound data event,
even when nothing survived filtering, so a downstream consumer can run its
own timeout bookkeeping. Sinks never parse tag lines; they only move them.

Concrete implementations:
  - LoggingSink   : one log line per notification (the default)
  - CallbackSink  : hand each batch to a callable in this process
  - HttpSink      : POST batches to <base_url>/sensors/notifications with a
                    small queue and retry/backoff
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import httpx


class NotificationSink:
    """
    Polymorphic sink interface. process_notifications() is called on the
    event loop and must not block; start()/stop() are optional hooks.
    """
    async def start(self):
        """Optional background tasks."""
        return

    async def stop(self):
        """Graceful shutdown hook."""
        return

    def process_notifications(self, lines: List[str]) -> None:
        raise NotImplementedError


class LoggingSink(NotificationSink):
    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logging.getLogger("alien.sink")
        self.batches = 0

    def process_notifications(self, lines: List[str]) -> None:
        self.batches += 1
        for line in lines:
            self._log.info("notification", extra={"line": line})


class CallbackSink(NotificationSink):
    """Forward every batch (empty ones included) to `callback`."""
    def __init__(self, callback: Callable[[List[str]], Any]):
        self._callback = callback

    def process_notifications(self, lines: List[str]) -> None:
        self._callback(list(lines))


class HttpSink(NotificationSink):
    """
    Posts batches to a collector over HTTP with:
      - small queue to absorb bursts
      - retry with exponential backoff
      - shared AsyncClient
    Empty batches are counted but not sent; they only matter to in-process
    consumers that track timeouts.
    """
    def __init__(
        self,
        base_url: str,
        reader: str = "alien",
        *,
        timeout_ms: int = 500,
        max_queue: int = 256,
        path: str = "/sensors/notifications",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.reader = reader
        self.path = path
        self.timeout = timeout_ms / 1000.0
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._queue: asyncio.Queue[List[str]] = asyncio.Queue(maxsize=max_queue)
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self._log = logging.getLogger("alien.sink")

        # Observability counters (simple integers; emit in logs)
        self.batches_seen = 0
        self.batches_enqueued = 0
        self.batches_sent = 0
        self.batches_failed = 0
        self.batches_dropped = 0
        self.send_attempts = 0

    async def start(self):
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        )
        self._task = asyncio.create_task(self._run_sender(), name="http_sink_sender")

    async def stop(self):
        self._stopping.set()
        if self._task:
            await self._task
            self._task = None
        if self._client:
            await self._client.aclose()
            self._client = None

    def process_notifications(self, lines: List[str]) -> None:
        self.batches_seen += 1
        if not lines:
            return
        try:
            self._queue.put_nowait(list(lines))
        except asyncio.QueueFull:
            # Backpressure: drop oldest then enqueue (lossy protection).
            self._queue.get_nowait()
            self.batches_dropped += 1
            self._queue.put_nowait(list(lines))
        self.batches_enqueued += 1

    def payload(self, lines: List[str]) -> Dict[str, Any]:
        return {"reader": self.reader, "lines": lines}

    async def _run_sender(self):
        """
        Worker task: drains the queue and POSTs each batch.
        Backoff doubles on each transient error (cap 2s), resets on success.
        """
        assert self._client is not None
        backoff = 0.1
        while not (self._stopping.is_set() and self._queue.empty()):
            try:
                lines = await asyncio.wait_for(self._queue.get(), timeout=0.25)
            except asyncio.TimeoutError:
                continue

            self.send_attempts += 1
            t0 = time.perf_counter()
            try:
                resp = await self._client.post(self.path, json=self.payload(lines))
                if 200 <= resp.status_code < 300:
                    self.batches_sent += 1
                    self._log.debug(
                        "published",
                        extra={
                            "count": len(lines),
                            "status": resp.status_code,
                            "latency_ms": round((time.perf_counter() - t0) * 1000, 1),
                        },
                    )
                    backoff = 0.1  # reset backoff on success
                    continue
                self.batches_failed += 1
                self._log.warning(
                    "http_non_2xx",
                    extra={"count": len(lines), "status": resp.status_code},
                )
            except httpx.HTTPError as e:
                self.batches_failed += 1
                self._log.warning("http_error", extra={"count": len(lines), "err": str(e)})

            if self._stopping.is_set():
                # shutting down; don't spin on an unreachable collector
                self.batches_dropped += 1
                continue
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2.0, 2.0)
            # requeue for another try
            await self._queue.put(lines)


def build_sink(sink_cfg: Optional[Dict[str, Any]], reader_name: str = "alien") -> NotificationSink:
    """Factory keyed by sink.mode: 'log' (default) or 'http'."""
    sink_cfg = sink_cfg or {}
    mode = str(sink_cfg.get("mode", "log")).lower()

    if mode == "log":
        return LoggingSink()

    if mode == "http":
        http_cfg = sink_cfg.get("http", {}) or {}
        return HttpSink(
            http_cfg.get("base_url", "http://127.0.0.1:8000"),
            reader=reader_name,
            timeout_ms=int(http_cfg.get("timeout_ms", 500)),
            max_queue=int(http_cfg.get("max_queue", 256)),
            path=str(http_cfg.get("path", "/sensors/notifications")),
        )

    raise ValueError(f"Unknown sink.mode: {mode}")
