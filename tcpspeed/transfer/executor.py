"""
Transfer Executors

Each executor drives one direction of one connection to completion and
adds every byte it moves to a shared ByteCounter. The executor owns the
connection it is given and closes it when it returns or raises.

Throughput is reported in bits per second.
"""

import logging
import time
from typing import Optional

from .counter import ByteCounter
from .errors import TransferInterrupted
from .payload import PayloadGenerator
from .protocol import (
    MB, SENTINEL, Command, SpeedtestConnection, check_upload_ack, frame_command
)

logger = logging.getLogger(__name__)


def throughput(byte_count: int, elapsed: float) -> float:
    """Bits per second for `byte_count` bytes moved in `elapsed` seconds."""
    if elapsed <= 0:
        return 0.0
    return byte_count * 8 / elapsed


def to_mbps(bits_per_second: float) -> float:
    return bits_per_second / 1_000_000


def run_upload(connection: SpeedtestConnection, target_bytes: int,
               counter: Optional[ByteCounter] = None,
               seed: Optional[int] = None,
               log: Optional[logging.Logger] = None) -> float:
    """
    Upload `target_bytes` bytes over `connection`.

    The handshake line counts towards the total, so the random payload is
    `target_bytes` minus the handshake length (sentinel included).

    Args:
        connection: Open connection, closed on return
        target_bytes: Total bytes to send, handshake included
        counter: Shared counter; a private one is used when omitted
        seed: Fixed seed for the payload generator
        log: Logger to report progress to

    Returns:
        Throughput in bits per second

    Raises:
        TransferConnectionError: socket write/read failed
        TransferInterrupted: acknowledgement did not echo `target_bytes`
        WorkerFailure: payload generator died
    """
    log = log or logger
    counter = counter if counter is not None else ByteCounter()

    payload_bytes = target_bytes - len(frame_command(Command.UPLOAD, target_bytes))
    if payload_bytes < 1:
        connection.close()
        raise ValueError(f"Upload size {target_bytes} is too small to carry a payload")

    with connection:
        start = time.perf_counter()
        counter.add(connection.send_handshake(Command.UPLOAD, target_bytes, log=log))

        generator = PayloadGenerator(payload_bytes, seed=seed, log=log).start()
        log.info(f"Uploading {target_bytes / MB:.2f} MB to {connection.host}")
        try:
            for chunk in generator:
                connection.write(chunk)
                counter.add(len(chunk))
        finally:
            generator.stop()

        elapsed = time.perf_counter() - start
        log.info(f"Upload took {elapsed:.6f} seconds")

        line = connection.read_ack()
        log.info(f"Server response: {line!r}")

    check_upload_ack(target_bytes, line)
    return throughput(target_bytes, elapsed)


def run_download(connection: SpeedtestConnection, target_bytes: int,
                 counter: Optional[ByteCounter] = None,
                 log: Optional[logging.Logger] = None) -> float:
    """
    Download `target_bytes` bytes over `connection`.

    The stream ends at the first read buffer whose last byte is the newline
    sentinel, or when the peer closes. All bytes received, sentinel
    included, must add up to `target_bytes`.

    Returns:
        Throughput in bits per second

    Raises:
        TransferConnectionError: socket write/read failed
        TransferInterrupted: received byte count differs from `target_bytes`
    """
    log = log or logger
    counter = counter if counter is not None else ByteCounter()
    received = 0

    with connection:
        connection.send_handshake(Command.DOWNLOAD, target_bytes, log=log)
        log.info(f"Downloading {target_bytes / MB:.2f} MB from {connection.host}")

        start = time.perf_counter()
        while True:
            buffer = connection.peek()
            length = len(buffer)
            counter.add(length)
            received += length
            if length == 0 or buffer.endswith(SENTINEL):
                break
            connection.consume(length)

        elapsed = time.perf_counter() - start
        log.info(f"Download took {elapsed:.6f} seconds")

    if received != target_bytes:
        raise TransferInterrupted(
            f"Download was interrupted, requested {target_bytes} bytes "
            f"but received {received}",
            requested=target_bytes,
            observed=received,
        )
    return throughput(received, elapsed)
