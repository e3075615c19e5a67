"""
Speedtest Wire Protocol

Design Decision: Framing
========================

Options Considered:
1. Length-prefixed binary messages
   - Unambiguous, easy to parse
   - Not what speedtest.net servers speak

2. Line-oriented text commands + raw payload
   - What the servers actually implement
   - Payload end is signalled by a single trailing newline

Decision: Line-oriented commands, raw payload
- Commands are ASCII lines terminated by CRLF
- Acknowledgements are a single line
- Payload has no length prefix; the final byte is a newline sentinel
  (or the peer closes the stream, downloads only)

Commands:
```
UPLOAD {n} 0\r\n     -> client sends n bytes (command included), server echoes n
DOWNLOAD {n}\r\n     -> server streams n bytes ending in \n
PING \r\n            -> server replies one line
HI\r\n               -> server replies one line (liveness check)
```
"""

import logging
import socket
import time
from enum import Enum
from typing import Optional, Tuple

from .errors import TransferConnectionError, TransferInterrupted

logger = logging.getLogger(__name__)

MB = 1024 * 1024
DEFAULT_PORT = 8080
SENTINEL = b'\n'


class Command(Enum):
    """Control commands understood by the server."""
    UPLOAD = "UPLOAD"
    DOWNLOAD = "DOWNLOAD"
    PING = "PING"
    HI = "HI"


def frame_command(command: Command, target_bytes: int = 0) -> bytes:
    """Build the handshake line for a command."""
    if command is Command.UPLOAD:
        line = f"UPLOAD {target_bytes} 0\r\n"
    elif command is Command.DOWNLOAD:
        line = f"DOWNLOAD {target_bytes}\r\n"
    elif command is Command.PING:
        line = "PING \r\n"
    else:
        line = "HI\r\n"
    return line.encode('ascii')


def check_upload_ack(target_bytes: int, line: str):
    """
    Validate the server's reply to a finished upload.

    The reply only has to contain the requested size somewhere, so a reply of
    "15000000" satisfies a request of 5000000.
    """
    if str(target_bytes) not in line:
        raise TransferInterrupted(
            f"Upload was interrupted, uploaded {target_bytes} bytes "
            f"but server responded: {line!r}",
            requested=target_bytes,
            observed=line,
        )


def parse_host(host: str, default_port: int = DEFAULT_PORT) -> Tuple[str, int]:
    """Split "host:port" (or "[v6]:port") into its parts."""
    if host.startswith('['):
        addr, _, rest = host[1:].partition(']')
        port = rest.lstrip(':')
        port_number = int(port) if port else default_port
    elif host.count(':') == 1:
        addr, _, port = host.partition(':')
        port_number = int(port)
    else:
        addr, port_number = host, default_port

    if not 0 < port_number < 65536:
        raise ValueError(f"Port out of range: {port_number}")
    return addr, port_number


class SpeedtestConnection:
    """
    One open byte stream to a speedtest server.

    Reads go through a 1 MiB buffered reader so downloads can inspect a
    filled buffer before consuming it.
    """

    def __init__(self, sock: socket.socket, host: Optional[str] = None,
                 buffer_size: int = MB, log: Optional[logging.Logger] = None):
        self.sock = sock
        self.host = host
        self.log = log or logger
        self._reader = sock.makefile('rb', buffering=buffer_size)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes):
        """Write all of `data` to the socket."""
        if self._closed:
            raise TransferConnectionError("Connection closed", host=self.host)
        try:
            self.sock.sendall(data)
        except OSError as e:
            raise TransferConnectionError(
                f"Write to {self.host} failed: {e}", host=self.host
            ) from e

    def send_handshake(self, command: Command, target_bytes: int = 0,
                       log: Optional[logging.Logger] = None) -> int:
        """Send the command line; returns the number of bytes written."""
        data = frame_command(command, target_bytes)
        (log or self.log).debug(f"Sending handshake {data!r}")
        self.write(data)
        return len(data)

    def read_ack(self) -> str:
        """Block until one line arrives and return it verbatim."""
        try:
            line = self._reader.readline()
        except OSError as e:
            raise TransferConnectionError(
                f"Read from {self.host} failed: {e}", host=self.host
            ) from e
        return line.decode('latin-1')

    def peek(self) -> bytes:
        """
        Return the buffered bytes without consuming them.

        Fills the buffer with at most one socket read when it is empty. An
        empty result means the peer closed the stream.
        """
        try:
            return self._reader.peek()
        except OSError as e:
            raise TransferConnectionError(
                f"Read from {self.host} failed: {e}", host=self.host
            ) from e

    def consume(self, count: int):
        """Discard `count` already-buffered bytes."""
        self._reader.read(count)

    def close(self):
        if not self._closed:
            self._closed = True
            self._reader.close()
            self.sock.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def open_connection(host: str, timeout: float = 10.0,
                    log: Optional[logging.Logger] = None) -> SpeedtestConnection:
    """
    Open a TCP connection to "host:port".

    The timeout only applies to connecting; transfers block without limit.
    The connection logs to `log` (the module logger when omitted).
    """
    try:
        addr, port = parse_host(host)
    except ValueError as e:
        raise TransferConnectionError(f"Invalid server address {host!r}", host=host) from e
    try:
        sock = socket.create_connection((addr, port), timeout=timeout)
    except OSError as e:
        raise TransferConnectionError(
            f"Failed to connect to {host}: {e}", host=host
        ) from e
    sock.settimeout(None)
    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    return SpeedtestConnection(sock, host=host, log=log)


def identify(connection: SpeedtestConnection,
             log: Optional[logging.Logger] = None) -> str:
    """Send HI and return the server's greeting line."""
    log = log or connection.log
    connection.send_handshake(Command.HI, log=log)
    line = connection.read_ack()
    if not line:
        raise TransferConnectionError(
            f"Server {connection.host} closed the connection during HI",
            host=connection.host,
        )
    log.info(f"Server response: {line.strip()!r}")
    return line


def connect(host: str, timeout: float = 10.0,
            log: Optional[logging.Logger] = None) -> SpeedtestConnection:
    """Open a connection and check the server is alive."""
    (log or logger).info(f"Connecting to server: {host}")
    connection = open_connection(host, timeout=timeout, log=log)
    try:
        identify(connection)
    except Exception:
        connection.close()
        raise
    return connection


def ping(connection: SpeedtestConnection,
         log: Optional[logging.Logger] = None) -> float:
    """
    Measure one PING round trip.

    Returns:
        Latency in milliseconds
    """
    log = log or connection.log
    start = time.perf_counter()
    connection.send_handshake(Command.PING, log=log)
    line = connection.read_ack()
    elapsed = time.perf_counter() - start
    if not line:
        raise TransferConnectionError(
            f"Server {connection.host} closed the connection during PING",
            host=connection.host,
        )
    log.debug(f"Server response: {line.strip()!r}")
    return elapsed * 1000.0
