"""
Log Buffer Module

This module implements the bounded output sink attached to every
invocation. Capacity is fixed in bytes at construction time; once it
is reached, further bytes are dropped (truncate-tail) and the buffer
is flagged as truncated so readers can see content is missing.
"""

## version related
__author__ = "Kyle"
__version__ = "0.0.1"
__email__ = "kyle@hacking-linux.com"

## import builtin pkgs
import logging
from threading import Lock

## marker appended when rendering a truncated buffer as text
TRUNCATED_MARKER = '\n... [output truncated]'

class LogBuffer(object):
    """
    Byte-capacity-bounded, append-only output sink.

    The storage is a preallocated bytearray of exactly `capacity`
    bytes, so the retained size can never exceed the capacity.
    Writes after close() are ignored: the buffer is frozen once its
    invocation is finalized.
    """

    def __init__(self, capacity: int, encoding: str = 'utf-8') -> None:
        if capacity < 0:
            raise ValueError('capacity must be >= 0, got %r' % (capacity))

        self.capacity = capacity
        self.encoding = encoding

        ## fixed storage and fill level
        self._data = bytearray(capacity)
        self._size = 0

        ## number of bytes rejected because the buffer was full
        self.dropped = 0
        self.closed = False
        self._lock = Lock()

    def write(self, data) -> int:
        """
        Append data to the buffer.

        Args:
            data (str | bytes): Output to append

        Returns:
            int: Number of bytes actually retained
        """

        if isinstance(data, str):
            data = data.encode(self.encoding, errors = 'replace')

        with self._lock:
            if self.closed:
                return 0

            ## copy what still fits, count the rest as dropped
            room = self.capacity - self._size
            kept = min(room, len(data))
            self._data[self._size:self._size + kept] = data[:kept]
            self._size += kept
            self.dropped += len(data) - kept
            return kept

    def flush(self) -> None:
        pass

    def close(self) -> None:
        with self._lock:
            self.closed = True

    @property
    def truncated(self) -> bool:
        return self.dropped > 0

    def __len__(self) -> int:
        return self._size

    def getvalue(self) -> bytes:
        with self._lock:
            return bytes(self._data[:self._size])

    def text(self) -> str:
        """
        Render the buffer as text, with a visible marker when output
        was truncated.

        Returns:
            str: Decoded buffer content
        """

        text = self.getvalue().decode(self.encoding, errors = 'replace')
        if self.truncated:
            text += TRUNCATED_MARKER

        return text

class LogBufferHandler(logging.Handler):
    """
    Logging handler writing formatted records into a LogBuffer.
    """

    def __init__(self, buffer: LogBuffer) -> None:
        super().__init__()
        self.buffer = buffer

    def emit(self, record):
        try:
            self.buffer.write(self.format(record) + '\n')

        except Exception:
            self.handleError(record)
