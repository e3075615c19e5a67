"""
Upload Payload Generator

Random payload is produced on its own thread and handed to the socket
writer through a bounded queue. When the writer falls behind, the queue
fills and the generator blocks, so at most QUEUE_SIZE chunks (~16 MiB)
are ever buffered.
"""

import logging
import os
import queue
import random
import string
import threading
from typing import Iterator, Optional

from .errors import WorkerFailure
from .protocol import MB, SENTINEL

logger = logging.getLogger(__name__)

QUEUE_SIZE = 16

ALPHANUMERIC = (string.ascii_letters + string.digits).encode('ascii')

# Random bytes >= 248 are dropped so every alphanumeric is equally likely
_ACCEPT = len(ALPHANUMERIC) * (256 // len(ALPHANUMERIC))
_TABLE = bytes(ALPHANUMERIC[i % len(ALPHANUMERIC)] for i in range(256))
_REJECT = bytes(range(_ACCEPT, 256))

_FAILED = object()


class PayloadGenerator:
    """
    Produces `payload_bytes` of alphanumeric payload in chunks.

    Every chunk is at most `chunk_size` bytes. The last chunk ends with the
    newline sentinel, which is part of `payload_bytes`, so the chunk lengths
    always sum to exactly `payload_bytes`.
    """

    def __init__(self, payload_bytes: int, seed: Optional[int] = None,
                 chunk_size: int = MB, queue_size: int = QUEUE_SIZE,
                 log: Optional[logging.Logger] = None):
        if payload_bytes < 1:
            raise ValueError(f"Payload needs at least 1 byte for the sentinel, got {payload_bytes}")
        if chunk_size < 1:
            raise ValueError(f"Invalid chunk size: {chunk_size}")

        self.payload_bytes = payload_bytes
        self.chunk_size = chunk_size
        self.log = log or logger
        if seed is None:
            seed = int.from_bytes(os.urandom(16), 'big')
        self._random = random.Random(seed)

        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._stopped = threading.Event()
        self._error: Optional[BaseException] = None
        self._thread = threading.Thread(
            target=self._run, name='payload-generator', daemon=True
        )

        self.chunks_produced = 0

    def start(self) -> 'PayloadGenerator':
        self._thread.start()
        return self

    def stop(self):
        """Ask the generator to exit; used when the writer gives up early."""
        self._stopped.set()

    def join(self, timeout: Optional[float] = None):
        self._thread.join(timeout)

    @property
    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def random_bytes(self, length: int) -> bytes:
        """Uniformly distributed alphanumeric bytes."""
        out = bytearray()
        while len(out) < length:
            missing = length - len(out)
            raw = self._random.randbytes(missing + (missing >> 4) + 16)
            out += raw.translate(_TABLE, _REJECT)
        del out[length:]
        return bytes(out)

    def _put(self, item) -> bool:
        while not self._stopped.is_set():
            try:
                self._queue.put(item, timeout=0.1)
                return True
            except queue.Full:
                continue
        return False

    def _run(self):
        remaining = self.payload_bytes
        try:
            while remaining > 0:
                length = min(self.chunk_size, remaining)
                remaining -= length
                if remaining == 0:
                    chunk = self.random_bytes(length - 1) + SENTINEL
                else:
                    chunk = self.random_bytes(length)

                if not self._put(chunk):
                    self.log.debug("Payload generator stopped before completion")
                    return
                self.chunks_produced += 1
        except Exception as e:
            self.log.error(f"Payload generator failed: {e}")
            self._error = e
            self._put(_FAILED)

    def get(self) -> bytes:
        """Pop the next chunk, blocking until one is ready."""
        item = self._queue.get()
        if item is _FAILED:
            raise WorkerFailure(f"Payload generator failed: {self._error}") from self._error
        return item

    def __iter__(self) -> Iterator[bytes]:
        """Yield chunks in production order up to and including the last one."""
        while True:
            chunk = self.get()
            yield chunk
            if chunk.endswith(SENTINEL):
                return
