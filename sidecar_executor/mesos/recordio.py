"""Incremental decoder for RecordIO framed streams.

Each record is ``<decimal length>\\n<length bytes of payload>``. The agent's
event stream uses it to frame one JSON event per record.
"""

from __future__ import annotations

from typing import Iterable, Iterator

MAX_RECORD_SIZE = 64 * 1024 * 1024


class RecordIOError(ValueError):
    pass


class RecordIODecoder:
    """Feed raw chunks in, get complete records out."""

    def __init__(self, max_record_size: int = MAX_RECORD_SIZE) -> None:
        self._buffer = bytearray()
        self._expected: int | None = None
        self._max = max_record_size

    def feed(self, chunk: bytes) -> list[bytes]:
        """Consume a chunk and return every record it completed.

        Raises:
            RecordIOError: On a malformed or oversized length header.
        """
        self._buffer.extend(chunk)
        records: list[bytes] = []
        while True:
            if self._expected is None:
                newline = self._buffer.find(b"\n")
                if newline < 0:
                    if len(self._buffer) > 20:
                        raise RecordIOError("record length header too long")
                    break
                header = bytes(self._buffer[:newline]).strip()
                del self._buffer[: newline + 1]
                if not header.isdigit():
                    raise RecordIOError(f"invalid record length: {header!r}")
                self._expected = int(header)
                if self._expected > self._max:
                    raise RecordIOError(f"record of {self._expected} bytes exceeds limit")
            if len(self._buffer) < self._expected:
                break
            records.append(bytes(self._buffer[: self._expected]))
            del self._buffer[: self._expected]
            self._expected = None
        return records

    def decode(self, chunks: Iterable[bytes]) -> Iterator[bytes]:
        for chunk in chunks:
            yield from self.feed(chunk)
