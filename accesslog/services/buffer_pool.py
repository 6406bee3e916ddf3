"""
Reusable scratch buffers for rendering access-log lines.
"""

import io
import threading
from contextlib import contextmanager
from typing import Iterator, List

DEFAULT_POOL_SIZE = 64


class BufferPool:
    """
    Pool of ``io.StringIO`` buffers.

    Buffers are reset on acquire, so a borrowed buffer never holds text from
    an earlier request. At most ``max_size`` idle buffers are retained;
    surplus buffers are discarded on release.
    """

    def __init__(self, max_size: int = DEFAULT_POOL_SIZE) -> None:
        if max_size < 0:
            raise ValueError("max_size must not be negative")
        self.max_size = max_size
        self._idle: List[io.StringIO] = []
        self._lock = threading.Lock()

    def acquire(self) -> io.StringIO:
        with self._lock:
            buf = self._idle.pop() if self._idle else None
        if buf is None:
            return io.StringIO()
        buf.seek(0)
        buf.truncate(0)
        return buf

    def release(self, buf: io.StringIO) -> None:
        with self._lock:
            if len(self._idle) < self.max_size:
                self._idle.append(buf)

    @contextmanager
    def borrow(self) -> Iterator[io.StringIO]:
        """Scoped acquire that releases the buffer on every exit path."""
        buf = self.acquire()
        try:
            yield buf
        finally:
            self.release(buf)

    @property
    def idle_count(self) -> int:
        with self._lock:
            return len(self._idle)
