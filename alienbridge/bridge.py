"""
Alien Bridge - reader orchestrator
==================================

Purpose
-------
Sign in to an Alien RFID reader over its control port, configure it for
autonomous inventory with TCP notifications pointed back at us, then accept
the reader's notification connections and hand filtered line batches to a
sink.

Startup order
-------------
  1) sink.start()
  2) ControlChannel.connect()            Username> / Password> / Alien>
  3) SetupSequencer.run()                ReaderName ... AutoMode=on
  4) NotificationListener.start()        0.0.0.0:20001 by default

A setup failure disconnects the control channel and propagates. A listener
bind failure is logged but leaves the signed-in control channel alone, so
ad-hoc commands still work.

CLI
---
    python -m alienbridge.bridge --config /path/to/config.yaml
    alien-bridge --config /path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from typing import Any, Dict, List, Optional

from alienbridge.config_loader import (
    ListenerConfig,
    ReaderConfig,
    get_listener_cfg,
    get_log_level,
    get_reader_cfg,
    get_sink_cfg,
    load_config,
)
from alienbridge.control_channel import ControlChannel
from alienbridge.errors import ListenerError
from alienbridge.notification_listener import NotificationListener
from alienbridge.notification_sink import NotificationSink, build_sink
from alienbridge.setup_sequencer import SetupSequencer


class ReaderBridge:
    """
    Wires: ControlChannel → SetupSequencer → NotificationListener → sink.
    """
    def __init__(
        self,
        reader_cfg: ReaderConfig,
        listener_cfg: ListenerConfig,
        sink: NotificationSink,
        *,
        log: Optional[logging.Logger] = None,
    ):
        self.reader_cfg = reader_cfg
        self.listener_cfg = listener_cfg
        self.sink = sink
        self.log = log or logging.getLogger("alien.bridge")

        self.channel = ControlChannel(reader_cfg)
        self.setup = SetupSequencer(self.channel, reader_cfg)
        self.listener = NotificationListener(listener_cfg, sink)

        self._sink_started = False
        self.setup_commands: List[str] = []

    @classmethod
    def from_config(cls, cfg_dict: Dict[str, Any]) -> "ReaderBridge":
        reader_cfg = get_reader_cfg(cfg_dict)
        return cls(
            reader_cfg,
            get_listener_cfg(cfg_dict),
            build_sink(get_sink_cfg(cfg_dict), reader_name=reader_cfg.name),
        )

    async def start(self) -> None:
        self.log.info(
            "bridge_start",
            extra={
                "reader": self.reader_cfg.name,
                "host": self.reader_cfg.address,
                "port": self.reader_cfg.port,
                "notify_port": self.reader_cfg.notify_port,
            },
        )
        if not self._sink_started:
            await self.sink.start()
            self._sink_started = True

        await self.channel.connect()
        try:
            self.setup_commands = await self.setup.run()
        except Exception:
            self.log.error("bridge_setup_failed", extra={"reader": self.reader_cfg.name})
            self.channel.disconnect()
            raise

        try:
            await self.listener.start()
        except ListenerError as e:
            # control channel stays up; notifications just won't arrive
            self.log.error("bridge_listener_unavailable", extra={"err": str(e)})

        self.log.info("bridge_ready", extra={"reader": self.reader_cfg.name})

    async def stop(self) -> None:
        """Stop listener, close the control channel, flush the sink. Idempotent."""
        try:
            await self.listener.stop()
        except Exception:
            self.log.exception("bridge_listener_stop_failed")

        self.channel.disconnect()

        if self._sink_started:
            self._sink_started = False
            try:
                await self.sink.stop()
            except Exception:
                self.log.exception("bridge_sink_stop_failed")

        self.log.info(
            "bridge_stop",
            extra={"events": self.listener.events_total, "lines": self.listener.lines_total},
        )

    async def run_command(self, cmd: str) -> List[str]:
        return await self.channel.run_command(cmd)


# ------------------------------------------------------------
# Entry point
# ------------------------------------------------------------


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Alien RFID reader bridge")
    ap.add_argument("--config", help="Path to config/config.yaml (optional)")
    return ap.parse_args(argv)


async def _amain(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    cfg_dict = load_config(args.config)

    logging.basicConfig(
        level=getattr(logging, get_log_level(cfg_dict, "INFO"), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    stop_evt = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # not available on Windows event loops; Ctrl-C still raises KeyboardInterrupt there
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_evt.set)

    bridge = ReaderBridge.from_config(cfg_dict)
    try:
        await bridge.start()
        await stop_evt.wait()
    finally:
        await bridge.stop()


def main(argv: Optional[List[str]] = None) -> None:
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_amain(argv))


if __name__ == "__main__":
    main()
