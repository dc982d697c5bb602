# alienbridge/line_framer.py
"""
Byte-chunk accumulator for the reader's line-oriented text protocol.

TCP gives us arbitrary fragments: a prompt like "Username>" may arrive as
"User" + "name>", and a CRLF may be split between two reads. The framer keeps
everything it has been fed until the caller drains it, so marker checks and
line splitting always see the whole unconsumed stream.
"""

from __future__ import annotations

import codecs
from typing import List


class LineFramer:
    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding
        # incremental so a multi-byte char split across reads decodes cleanly
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buf = ""

    def feed(self, chunk: bytes) -> None:
        """Append one raw chunk (any size, including empty) to the accumulator."""
        self._buf += self._decoder.decode(chunk)

    def contains_marker(self, marker: str) -> bool:
        return marker in self._buf

    def drain_lines(self) -> List[str]:
        """
        Return every line in the accumulator and clear it.

        Carriage returns are stripped and the text is split on "\\n". The last
        element is whatever followed the final newline (often "" or a prompt
        such as "Alien>"), so callers see exactly what the device sent.
        """
        text = self._buf.replace("\r", "")
        self._buf = ""
        return text.split("\n")

    def drain_complete_lines(self) -> List[str]:
        """
        Return only newline-terminated lines (CRs stripped) and keep the
        unterminated tail buffered for the next feed().
        """
        cut = self._buf.rfind("\n")
        if cut < 0:
            return []
        text, self._buf = self._buf[:cut], self._buf[cut + 1:]
        return text.replace("\r", "").split("\n")

    def clear(self) -> None:
        self._buf = ""

    @property
    def text(self) -> str:
        return self._buf

    def __len__(self) -> int:
        return len(self._buf)
