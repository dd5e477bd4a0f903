from collections import deque
from typing import BinaryIO, Deque, Iterator

_CR = 0x0D
_LF = 0x0A


class LineReader:
    """Single-pass iterator over the lines of a byte stream.

    Both '\\r' and '\\n' end a line, so the carriage-return progress updates
    HandBrake writes in place come out as separate tokens. Empty lines are
    skipped and a trailing unterminated line is yielded once at EOF.

    Reads go through `read1` when the stream has it: on a pipe that returns
    as soon as any bytes are available instead of waiting for a full chunk.
    """

    def __init__(self, stream: BinaryIO, chunk_size: int = 4096, encoding: str = "utf-8"):
        self._read = getattr(stream, "read1", None) or stream.read
        self._chunk_size = chunk_size
        self._encoding = encoding
        self._buffer = bytearray()
        self._pending: Deque[bytes] = deque()
        self._eof = False

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        while not self._pending:
            if self._eof:
                raise StopIteration
            self._fill()
        return self._pending.popleft().decode(self._encoding, errors="replace")

    def _fill(self):
        chunk = self._read(self._chunk_size)
        if not chunk:
            self._eof = True
            if self._buffer:
                self._pending.append(bytes(self._buffer))
                self._buffer.clear()
            return

        self._buffer.extend(chunk)
        start = 0
        for index, byte in enumerate(self._buffer):
            if byte == _CR or byte == _LF:
                if index > start:
                    self._pending.append(bytes(self._buffer[start:index]))
                start = index + 1
        del self._buffer[:start]
