"""
Reframing Transform
===================

Parses the agent's SSE-like stream and re-emits canonical client frames.

The agent sends ``data: <fragment>`` lines separated by blank lines, with a
``[DONE]`` sentinel embedded as ordinary data. Lines without the prefix are
treated as raw content. Each accepted fragment is appended to an
accumulation buffer so the full reply can be persisted once the stream
ends.

Network chunks do not respect line boundaries, so incomplete lines and
incomplete UTF-8 sequences are carried over to the next chunk.
"""

from typing import List, Optional, Union
import codecs

from .events import DONE_SENTINEL

DATA_PREFIX = "data: "
COMMENT_PREFIX = ":"


class ReframingTransform:
    """
    Incremental parser for agent stream chunks.

    ``feed`` returns the fragments completed by each chunk, ``flush`` handles
    whatever unterminated line is left when the upstream ends. ``text`` is
    the concatenation of every accepted fragment in order.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._parts: List[str] = []
        self.done_seen = False

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def fragment_count(self) -> int:
        return len(self._parts)

    def feed(self, chunk: Union[bytes, str]) -> List[str]:
        """
        Consume one upstream chunk.

        Args:
            chunk: Raw bytes or already-decoded text from the agent

        Returns:
            Fragments completed by this chunk, in order
        """
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)

        data = self._pending + chunk
        lines = data.split("\n")
        self._pending = lines.pop()

        fragments: List[str] = []
        for line in lines:
            fragment = self._accept(line)
            if fragment is not None:
                fragments.append(fragment)
        return fragments

    def flush(self) -> List[str]:
        """Process the trailing unterminated line once the upstream has ended."""
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        if not tail:
            return []
        fragment = self._accept(tail)
        return [fragment] if fragment is not None else []

    def _accept(self, line: str) -> Optional[str]:
        if self.done_seen:
            return None

        line = line.rstrip("\r")
        if line == DATA_PREFIX.rstrip():
            return None
        if line.startswith(DATA_PREFIX):
            content = line[len(DATA_PREFIX):]
            if DONE_SENTINEL in content:
                self.done_seen = True
                return None
            if not content.strip():
                return None
        elif line.strip() and not line.startswith(COMMENT_PREFIX):
            if DONE_SENTINEL in line:
                self.done_seen = True
                return None
            content = line
        else:
            return None

        self._parts.append(content)
        return content
