# alienbridge/setup_sequencer.py
"""
One-shot reader configuration after sign-in.

The reader is told who it is, which antennas to cycle, where to push
notifications, and then switched into autonomous acquisition. Commands go out
one at a time and each must finish before the next is sent. AutoMode=on is
always last: it starts the pipeline the earlier commands configure.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from alienbridge.config_loader import ReaderConfig
from alienbridge.control_channel import ControlChannel
from alienbridge.errors import AlienBridgeError, SetupAbortedError

CUSTOM_FORMAT = "%N,%A,%k,%m"                  # reader name, antenna, tag id, rssi
CUSTOM_FORMAT_TIMESTAMPED = "${TIME2}," + CUSTOM_FORMAT


def static_setup_commands(cfg: ReaderConfig) -> List[str]:
    fmt = CUSTOM_FORMAT_TIMESTAMPED if cfg.timestamp_format else CUSTOM_FORMAT
    return [
        "AcquireMode=Inventory",
        "TagListAntennaCombine=off",
        "NotifyMode=on",
        "NotifyTrigger=TrueFalse",
        f"TagListCustomFormat={fmt}",
        "NotifyFormat=Custom",
        "AutoModeReset",
        f"AutoStopTimer={cfg.auto_stop_timer_ms}",
        "AutoAction=Acquire",
        "AutoStartTrigger=0 0",
        "AutoStartPause=0",
        "AutoMode=on",       # must be last
    ]


def build_setup_commands(cfg: ReaderConfig, local_address: Optional[str]) -> List[str]:
    """
    Full ordered setup list. The notify host is the configured override, else
    the local address of the control socket (the interface the reader can
    already reach us on).
    """
    notify_host = cfg.notify_host or local_address
    if not notify_host:
        raise ValueError("no notify host: control channel not connected and reader.notify_host unset")

    return [
        f"ReaderName={cfg.name}",
        f"AntennaSequence={' '.join(cfg.antennas)}",
        f"NotifyAddress={notify_host}:{cfg.notify_port}",
    ] + static_setup_commands(cfg)


class SetupSequencer:
    def __init__(self, channel: ControlChannel, cfg: ReaderConfig, *,
                 log: Optional[logging.Logger] = None):
        self.channel = channel
        self.cfg = cfg
        self._log = log or logging.getLogger("alien.setup")

    async def run(self) -> List[str]:
        """Send every setup command in order; return the commands sent."""
        commands = build_setup_commands(self.cfg, self.channel.local_address)
        self._log.info("setup_start", extra={"reader": self.cfg.name, "commands": len(commands)})

        sent: List[str] = []
        for index, command in enumerate(commands):
            try:
                output = await self.channel.run_command(command)
            except AlienBridgeError as e:
                self._log.error("setup_error", extra={"cmd": command, "index": index, "err": str(e)})
                raise SetupAbortedError(command, index, e) from e
            sent.append(command)
            self._log.debug("setup_cmd", extra={"cmd": command, "output": output})

        self._log.info("setup_complete", extra={"reader": self.cfg.name})
        return sent
