#!/usr/bin/env python3
"""
Alien reader simulator (control port + notification push)

- Prompts "Username>" / "Password>" and re-prompts on bad credentials.
- Answers every command with: echo line, "<Key> = <Value>" style output,
  blank separator, "Alien>".
- Remembers every command it received (for tests and smoke checks).
- Once it sees "AutoMode=on" with a NotifyAddress set, it can push fake
  custom-format tag lines to that address every --notify-every seconds.

Run:
    python -m alienbridge.tools.sim_reader --port 20000 --notify-every 2
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import random
import time
from typing import Dict, Iterable, List, Optional, Set, Tuple

PROMPT = "Alien>"

log = logging.getLogger("alien.sim")


async def push_notifications(host: str, port: int, chunks: Iterable[bytes | str],
                             *, pause_s: float = 0.0) -> None:
    """Open one notification connection, write each chunk, close."""
    reader, writer = await asyncio.open_connection(host, port)
    try:
        for chunk in chunks:
            writer.write(chunk.encode() if isinstance(chunk, str) else chunk)
            await writer.drain()
            if pause_s:
                await asyncio.sleep(pause_s)
    finally:
        writer.close()
        with contextlib.suppress(ConnectionError):
            await writer.wait_closed()


def fake_tag_line(reader_name: str, antenna: str = "0") -> str:
    """One line in the ${TIME2},%N,%A,%k,%m custom format."""
    tag = "E200 3411 B802 0115 %04X %04X" % (random.randint(0, 0xFFFF), random.randint(0, 0xFFFF))
    stamp = time.strftime("%Y/%m/%d %H:%M:%S")
    return f"{stamp}.000,{reader_name},{antenna},{tag},-{random.randint(40, 70)}.0"


class SimReader:
    def __init__(
        self,
        username: str = "alien",
        password: str = "password",
        *,
        host: str = "127.0.0.1",
        port: int = 0,
        chunk_size: Optional[int] = None,
        notify_period_s: Optional[float] = None,
    ):
        self.username = username
        self.password = password
        self.host = host
        self.port = port
        self.chunk_size = chunk_size
        self.notify_period_s = notify_period_s

        # command -> behaviour overrides
        self.silent: Set[str] = set()         # never answered
        self.malformed: Set[str] = set()      # answered with a bare prompt
        self.hangup: Set[str] = set()         # connection closed instead of answering
        self.replies: Dict[str, List[str]] = {}

        self.commands: List[str] = []
        self.logins: List[Tuple[str, str]] = []
        self.settings: Dict[str, str] = {}

        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: Set[asyncio.StreamWriter] = set()
        self._notify_task: Optional[asyncio.Task] = None

    # -------------------- lifecycle --------------------

    async def start(self) -> int:
        self._server = await asyncio.start_server(self._handle, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        log.info("sim_listening", extra={"host": self.host, "port": self.port})
        return self.port

    async def stop(self) -> None:
        if self._notify_task:
            self._notify_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._notify_task
            self._notify_task = None
        for writer in list(self._writers):
            writer.close()
        if self._server:
            self._server.close()
            self._server = None

    # -------------------- protocol --------------------

    async def _send(self, writer: asyncio.StreamWriter, text: str) -> None:
        data = text.encode()
        step = self.chunk_size or len(data) or 1
        for i in range(0, len(data), step):
            writer.write(data[i:i + step])
            await writer.drain()
            if self.chunk_size:
                await asyncio.sleep(0.001)  # give the peer a chance to read the fragment

    async def _readline(self, reader: asyncio.StreamReader) -> Optional[str]:
        raw = await reader.readline()
        if not raw:
            return None
        return raw.decode(errors="replace").rstrip("\r\n")

    async def _login(self, reader, writer) -> bool:
        await self._send(writer, "\r\n*****************************\r\n"
                                 "* Alien Technology : RFID Reader (simulated)\r\n"
                                 "*****************************\r\n\r\nUsername>")
        while True:
            user = await self._readline(reader)
            if user is None:
                return False
            await self._send(writer, "Password>")
            pw = await self._readline(reader)
            if pw is None:
                return False
            self.logins.append((user, pw))
            if user == self.username and pw == self.password:
                await self._send(writer, "\r\n" + PROMPT)
                return True
            await self._send(writer, "Error: Invalid login.\r\n\r\nUsername>")

    def respond(self, cmd: str) -> List[str]:
        if cmd in self.replies:
            return list(self.replies[cmd])
        if cmd.lower().startswith("get "):
            key = cmd[4:].strip()
            return [f"{key} = {self.settings.get(key, '')}"]
        if "=" in cmd:
            key, _, value = cmd.partition("=")
            self.settings[key.strip()] = value.strip()
            return [f"{key.strip()} = {value.strip()}"]
        return [f"{cmd} OK"]

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.add(writer)
        try:
            if not await self._login(reader, writer):
                return
            while True:
                cmd = await self._readline(reader)
                if cmd is None:
                    return
                self.commands.append(cmd)
                log.debug("sim_command", extra={"cmd": cmd})

                if cmd in self.hangup:
                    return
                if cmd in self.silent:
                    continue
                if cmd in self.malformed:
                    await self._send(writer, PROMPT)
                    continue

                body = "".join(line + "\r\n" for line in self.respond(cmd))
                await self._send(writer, f"{cmd}\r\n{body}\r\n{PROMPT}")

                if cmd == "AutoMode=on":
                    self._maybe_start_notifying()
        except ConnectionError as e:
            log.info("sim_client_gone", extra={"err": str(e)})
        finally:
            self._writers.discard(writer)
            writer.close()

    # -------------------- notifications --------------------

    def notify_target(self) -> Optional[Tuple[str, int]]:
        addr = self.settings.get("NotifyAddress")
        if not addr or ":" not in addr:
            return None
        host, _, port = addr.rpartition(":")
        return host, int(port)

    def _maybe_start_notifying(self) -> None:
        if not self.notify_period_s or self._notify_task is not None:
            return
        target = self.notify_target()
        if target is None:
            return
        self._notify_task = asyncio.create_task(self._notify_loop(*target), name="sim_notify")

    async def _notify_loop(self, host: str, port: int) -> None:
        name = self.settings.get("ReaderName", "Alien")
        antennas = (self.settings.get("AntennaSequence") or "0").split()
        while True:
            await asyncio.sleep(self.notify_period_s)
            lines = [fake_tag_line(name, random.choice(antennas)) for _ in range(random.randint(0, 3))]
            payload = "#Alien Tag List\r\n" + ("".join(l + "\r\n" for l in lines) or "(No Tags)\r\n")
            try:
                await push_notifications(host, port, [payload])
            except OSError as e:
                log.warning("sim_notify_error", extra={"host": host, "port": port, "err": str(e)})


# -------------------- CLI --------------------

def _parse_args() -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Simulated Alien RFID reader")
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=20000)
    ap.add_argument("--username", default="alien")
    ap.add_argument("--password", default="password")
    ap.add_argument("--chunk", type=int, default=None, help="fragment output into N-byte writes")
    ap.add_argument("--notify-every", type=float, default=2.0, help="seconds between pushes (0 = off)")
    return ap.parse_args()


async def _amain() -> None:
    args = _parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    sim = SimReader(
        args.username, args.password,
        host=args.host, port=args.port,
        chunk_size=args.chunk,
        notify_period_s=args.notify_every or None,
    )
    await sim.start()
    print(f"Simulated reader on {args.host}:{sim.port} (Ctrl-C to quit)")
    try:
        await asyncio.Event().wait()
    finally:
        await sim.stop()


def main() -> None:
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(_amain())


if __name__ == "__main__":
    main()
