"""Newline framing for the child's stdout byte stream.

The child writes one JSON message per line, but pipe reads return arbitrary
chunks: a read can end mid-message or carry several messages at once. The
framer accumulates bytes, hands back every complete line, and keeps the
trailing fragment for the next read.
"""

import logging

logger = logging.getLogger(__name__)

# Maximum bytes a single line may occupy before it is considered garbage.
# 10MB should be generous for any legitimate MCP message.
MAX_LINE_LENGTH: int = 10 * 1024 * 1024  # 10 MB


class LineFramer:
    """Split a byte stream into newline-terminated lines.

    Example:
        framer = LineFramer()
        framer.feed(b'{"id":1}\\n{"id"')   # -> [b'{"id":1}']
        framer.feed(b':2}\\n')             # -> [b'{"id":2}']
    """

    def __init__(self, max_line_length: int = MAX_LINE_LENGTH) -> None:
        self._buffer = bytearray()
        self._max_line_length = max_line_length
        self._discarding = False

    def feed(self, chunk: bytes) -> list[bytes]:
        """Add a chunk and return the complete lines it finished.

        Lines are returned without their terminator (LF or CRLF). Blank lines
        are skipped. Partial data stays buffered.

        A partial line that grows beyond max_line_length is dropped up to its
        terminating newline and framing resumes after it.
        """
        self._buffer.extend(chunk)
        lines: list[bytes] = []

        while True:
            newline_idx = self._buffer.find(b"\n")
            if newline_idx < 0:
                break
            line = bytes(self._buffer[:newline_idx]).rstrip(b"\r")
            del self._buffer[: newline_idx + 1]
            if self._discarding:
                # Tail of an oversized line
                self._discarding = False
                continue
            if line.strip():
                lines.append(line)

        if len(self._buffer) > self._max_line_length:
            logger.error(
                "Dropping line from child exceeding %d bytes", self._max_line_length
            )
            self._buffer.clear()
            self._discarding = True

        return lines

    @property
    def pending(self) -> int:
        """Number of buffered bytes that do not yet form a complete line."""
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()
        self._discarding = False
