"""
Live Speed Sampler

Watches a ByteCounter from its own thread and logs the instantaneous speed
while executors run. It only ever reads the counter; stopping it early (the
watchdog) has no effect on the transfer.

A sample is taken once more than 1/32 of the target has moved since the
previous one. Between polls the sampler sleeps a quarter of the time since
the previous sample, capped at one second.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from .counter import ByteCounter

logger = logging.getLogger(__name__)

MEASURE_WINDOWS = 32
WATCHDOG_SECONDS = 20.0
MAX_POLL_INTERVAL = 1.0


@dataclass(frozen=True)
class SpeedSample:
    """Bytes moved between two consecutive observations."""
    timestamp: float
    delta_bytes: int
    elapsed: float

    @property
    def bits_per_second(self) -> float:
        if self.elapsed <= 0:
            return 0.0
        return self.delta_bytes * 8 / self.elapsed


SampleCallback = Callable[[SpeedSample], None]


class LiveSampler:
    """Periodic, read-only observer of a transfer's byte counter."""

    def __init__(self, counter: ByteCounter, target_bytes: int,
                 log: Optional[logging.Logger] = None,
                 windows: int = MEASURE_WINDOWS,
                 watchdog: float = WATCHDOG_SECONDS,
                 on_sample: Optional[SampleCallback] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Optional[Callable[[float], None]] = None):
        self.counter = counter
        self.target_bytes = target_bytes
        self.step = target_bytes // max(windows, 1)
        self.watchdog = watchdog
        self.on_sample = on_sample
        self.samples: List[SpeedSample] = []
        self.timed_out = False

        self._log = log or logger
        self._clock = clock
        self._stopped = threading.Event()
        self._sleep = sleep or self._stopped.wait
        self._thread: Optional[threading.Thread] = None

    def run(self):
        """Poll until the target is reached or the watchdog expires."""
        started = last_time = self._clock()
        last_value = 0

        while True:
            current = self.counter.value
            now = self._clock()
            delta = current - last_value
            elapsed = now - last_time

            if delta > self.step:
                sample = SpeedSample(timestamp=now, delta_bytes=delta, elapsed=elapsed)
                self.samples.append(sample)
                self._log.info(f"Speed now: {sample.bits_per_second / 1_000_000:.2f} Mbps")
                if self.on_sample:
                    self.on_sample(sample)
                last_value = current
                last_time = now

            if current >= self.target_bytes or self._stopped.is_set():
                break
            if now - started > self.watchdog:
                self.timed_out = True
                self._log.debug(f"Sampler watchdog expired after {self.watchdog}s")
                break

            self._sleep(min(elapsed / 4, MAX_POLL_INTERVAL))

    def start(self) -> 'LiveSampler':
        self._thread = threading.Thread(target=self.run, name='live-sampler', daemon=True)
        self._thread.start()
        return self

    def stop(self):
        """Stop sampling early; wakes the sampler if it is sleeping."""
        self._stopped.set()

    def join(self, timeout: Optional[float] = None):
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
