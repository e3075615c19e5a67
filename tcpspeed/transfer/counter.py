"""
Shared Byte Counter

A running total of bytes moved by every executor thread of one transfer.
The live sampler reads it concurrently; only additions are ever made.
"""

import threading


class ByteCounter:
    """Thread-safe, monotonically non-decreasing byte total."""

    def __init__(self):
        self._value = 0
        self._lock = threading.Lock()

    def add(self, count: int) -> int:
        """Add `count` bytes and return the new total."""
        if count < 0:
            raise ValueError(f"Byte counter cannot decrease (got {count})")
        with self._lock:
            self._value += count
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def __repr__(self) -> str:
        return f"ByteCounter({self.value})"
