"""
Transfer Orchestrator

Design Decision: Parallel Connections
=====================================

Options Considered:
1. One connection per test
   - Simple, but a single TCP stream rarely fills a fast link

2. N connections, each with its own counter
   - Per-connection numbers, but no live aggregate view

3. N connections sharing one counter
   - One live sampler sees the aggregate rate
   - Final rate is total bytes over wall-clock time

Decision: N connections sharing one ByteCounter
- The byte budget is split evenly; the remainder is dropped
- Executors run on a thread pool, one thread per connection
- A failing connection does not stop its siblings; every executor is
  awaited and the batch is then reported as failed
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from .counter import ByteCounter
from .errors import BatchFailed, TransferError, WorkerFailure
from .executor import run_download, run_upload, throughput
from .protocol import (
    MB, Command, SpeedtestConnection, frame_command, open_connection
)
from .sampler import (
    MEASURE_WINDOWS, WATCHDOG_SECONDS, LiveSampler, SampleCallback, SpeedSample
)

logger = logging.getLogger(__name__)


class Direction(Enum):
    """Which way the payload flows."""
    UPLOAD = "upload"
    DOWNLOAD = "download"


@dataclass(frozen=True)
class TransferRequest:
    """One logical transfer, possibly split across several connections."""
    direction: Direction
    target_bytes: int
    connection_count: int = 1

    def __post_init__(self):
        if self.connection_count < 1:
            raise ValueError(f"Connection count must be >= 1, got {self.connection_count}")
        if self.per_connection_bytes < self.minimum_bytes:
            raise ValueError(
                f"{self.direction.value} of {self.target_bytes} bytes over "
                f"{self.connection_count} connection(s) leaves "
                f"{self.per_connection_bytes} bytes per connection "
                f"(minimum {self.minimum_bytes})"
            )

    @property
    def effective_bytes(self) -> int:
        """Target rounded down to a multiple of the connection count."""
        return self.target_bytes // self.connection_count * self.connection_count

    @property
    def per_connection_bytes(self) -> int:
        return self.target_bytes // self.connection_count

    @property
    def minimum_bytes(self) -> int:
        if self.direction is Direction.UPLOAD:
            # Handshake plus at least the sentinel byte
            return len(frame_command(Command.UPLOAD, self.per_connection_bytes)) + 1
        return 1


@dataclass
class TransferResult:
    """Outcome of a completed transfer."""
    direction: Direction
    bytes: int
    elapsed: float
    bits_per_second: float
    connections: int = 1
    samples: List[SpeedSample] = field(default_factory=list)

    @property
    def mbps(self) -> float:
        return self.bits_per_second / 1_000_000

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            'direction': self.direction.value,
            'bytes': self.bytes,
            'elapsed_seconds': self.elapsed,
            'bits_per_second': self.bits_per_second,
            'mbps': self.mbps,
            'connections': self.connections,
            'samples': len(self.samples),
        }


class TransferOrchestrator:
    """
    Runs transfers and watches them with a LiveSampler.

    One orchestrator can run any number of transfers; every transfer gets a
    fresh ByteCounter.
    """

    def __init__(self, connect_timeout: float = 10.0,
                 windows: int = MEASURE_WINDOWS,
                 watchdog: float = WATCHDOG_SECONDS,
                 on_sample: Optional[SampleCallback] = None,
                 seed: Optional[int] = None,
                 log: Optional[logging.Logger] = None):
        """
        Args:
            connect_timeout: Seconds allowed for each TCP connect
            windows: Sampling granularity (samples per transfer)
            watchdog: Seconds after which live sampling gives up
            on_sample: Called with every live SpeedSample
            seed: Fixed payload seed, offset per connection
            log: Logger handed to every component
        """
        self.connect_timeout = connect_timeout
        self.windows = windows
        self.watchdog = watchdog
        self.on_sample = on_sample
        self.seed = seed
        self.log = log or logger

    def _sampler(self, counter: ByteCounter, target_bytes: int) -> LiveSampler:
        return LiveSampler(
            counter, target_bytes,
            log=self.log,
            windows=self.windows,
            watchdog=self.watchdog,
            on_sample=self.on_sample,
        )

    def _executor(self, direction: Direction, index: int) -> Callable[..., float]:
        if direction is Direction.UPLOAD:
            seed = None if self.seed is None else self.seed + index

            def upload(connection, target_bytes, counter):
                return run_upload(connection, target_bytes, counter, seed=seed, log=self.log)
            return upload

        def download(connection, target_bytes, counter):
            return run_download(connection, target_bytes, counter, log=self.log)
        return download

    def run_single(self, connection: SpeedtestConnection,
                   request: TransferRequest) -> TransferResult:
        """
        Run a one-connection transfer on an already-open connection.

        The executor runs on a worker thread while the sampler observes.
        The connection is closed whatever the outcome.
        """
        if request.connection_count != 1:
            connection.close()
            raise ValueError("run_single takes a single-connection request")

        counter = ByteCounter()
        sampler = self._sampler(counter, request.target_bytes).start()
        executor = self._executor(request.direction, 0)

        start = time.perf_counter()
        try:
            with ThreadPoolExecutor(max_workers=1,
                                    thread_name_prefix=request.direction.value) as pool:
                future = pool.submit(executor, connection, request.target_bytes, counter)
                try:
                    bits_per_second = future.result()
                except TransferError:
                    raise
                except Exception as e:
                    raise WorkerFailure(f"{request.direction.value} worker failed: {e}") from e
        finally:
            elapsed = time.perf_counter() - start
            sampler.stop()
            sampler.join()

        return TransferResult(
            direction=request.direction,
            bytes=request.target_bytes,
            elapsed=elapsed,
            bits_per_second=bits_per_second,
            connections=1,
            samples=list(sampler.samples),
        )

    def run(self, host: str, request: TransferRequest) -> TransferResult:
        """
        Run a transfer split across `request.connection_count` connections.

        Raises:
            TransferConnectionError: a connection could not be opened
            BatchFailed: at least one connection failed; carries every error
        """
        n = request.connection_count
        share = request.per_connection_bytes
        total = request.effective_bytes
        self.log.info(
            f"{request.direction.value.capitalize()} {total / MB:.2f} MB "
            f"over {n} connection(s) to {host}"
        )

        counter = ByteCounter()
        start = time.perf_counter()

        connections: List[SpeedtestConnection] = []
        try:
            for _ in range(n):
                connections.append(
                    open_connection(host, timeout=self.connect_timeout, log=self.log)
                )
        except TransferError:
            for connection in connections:
                connection.close()
            raise

        sampler = self._sampler(counter, total).start()
        errors: List[BaseException] = []

        with ThreadPoolExecutor(max_workers=n,
                                thread_name_prefix=request.direction.value) as pool:
            futures = [
                pool.submit(self._executor(request.direction, i), connection, share, counter)
                for i, connection in enumerate(connections)
            ]
            for i, future in enumerate(futures):
                try:
                    rate = future.result()
                    self.log.debug(f"Connection #{i + 1} finished at {rate / 1_000_000:.2f} Mbps")
                except Exception as e:
                    self.log.error(f"Connection #{i + 1} failed: {e}")
                    errors.append(e)

        elapsed = time.perf_counter() - start
        sampler.stop()
        sampler.join()

        if errors:
            raise BatchFailed(
                f"{len(errors)} of {n} connection(s) failed: "
                + "; ".join(str(e) for e in errors),
                errors=errors,
            )

        return TransferResult(
            direction=request.direction,
            bytes=total,
            elapsed=elapsed,
            bits_per_second=throughput(total, elapsed),
            connections=n,
            samples=list(sampler.samples),
        )


def _single_request(connection: SpeedtestConnection, direction: Direction,
                    target_bytes: int) -> TransferRequest:
    try:
        return TransferRequest(direction, target_bytes)
    except ValueError:
        connection.close()
        raise


def run_upload_single(connection: SpeedtestConnection, target_bytes: int,
                      **kwargs) -> float:
    """Upload over one open connection; returns bits per second."""
    request = _single_request(connection, Direction.UPLOAD, target_bytes)
    return TransferOrchestrator(**kwargs).run_single(connection, request).bits_per_second


def run_download_single(connection: SpeedtestConnection, target_bytes: int,
                        **kwargs) -> float:
    """Download over one open connection; returns bits per second."""
    request = _single_request(connection, Direction.DOWNLOAD, target_bytes)
    return TransferOrchestrator(**kwargs).run_single(connection, request).bits_per_second


def run_upload_multi(host: str, target_bytes: int, connection_count: int,
                     **kwargs) -> float:
    """Upload over `connection_count` parallel connections; returns bits per second."""
    request = TransferRequest(Direction.UPLOAD, target_bytes, connection_count)
    return TransferOrchestrator(**kwargs).run(host, request).bits_per_second


def run_download_multi(host: str, target_bytes: int, connection_count: int,
                       **kwargs) -> float:
    """Download over `connection_count` parallel connections; returns bits per second."""
    request = TransferRequest(Direction.DOWNLOAD, target_bytes, connection_count)
    return TransferOrchestrator(**kwargs).run(host, request).bits_per_second
