"""
Loopback speedtest server used by the tests.

Speaks the same line protocol as a real server:
    HI              -> greeting line
    PING            -> one line, optionally delayed
    UPLOAD n 0      -> reads payload up to the newline sentinel, replies with an ack
    DOWNLOAD n      -> streams n bytes ending in a newline
"""

import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set

import pytest


@dataclass
class UploadRecord:
    """What the stub saw for one upload."""
    connection: int
    handshake: bytes
    total_bytes: int


@dataclass
class StubOptions:
    ack: Callable[[int], str] = lambda n: f"OK {n} 1234\n"
    ping_delay: float = 0.0
    download_limit: Optional[int] = None   # close after this many bytes
    drop_connections: Set[int] = field(default_factory=set)


class StubServer:
    """Threaded TCP server implementing the speedtest line protocol."""

    def __init__(self, options: StubOptions):
        self.options = options
        self.uploads: List[UploadRecord] = []
        self.commands: List[bytes] = []
        self.connections = 0
        self._lock = threading.Lock()

        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(('127.0.0.1', 0))
        self._sock.listen(16)
        self.port = self._sock.getsockname()[1]
        self.host = f"127.0.0.1:{self.port}"
        self._running = True
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._thread.start()

    def close(self):
        self._running = False
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._sock.close()
        self._thread.join()

    def _accept_loop(self):
        while self._running:
            try:
                conn, _ = self._sock.accept()
            except OSError:
                return
            with self._lock:
                index = self.connections
                self.connections += 1
            threading.Thread(
                target=self._handle, args=(conn, index), daemon=True
            ).start()

    def _handle(self, conn: socket.socket, index: int):
        reader = conn.makefile('rb')
        try:
            while True:
                line = reader.readline()
                if not line:
                    return
                with self._lock:
                    self.commands.append(line)

                if index in self.options.drop_connections:
                    return

                parts = line.split()
                command = parts[0] if parts else b''
                if command == b'HI':
                    conn.sendall(b"HELLO 2.7 (2.7.4) 2019-11-07.1234.5678\n")
                elif command == b'PING':
                    time.sleep(self.options.ping_delay)
                    conn.sendall(f"PONG {int(time.time() * 1000)}\n".encode())
                elif command == b'UPLOAD':
                    size = int(parts[1])
                    payload = reader.readline()
                    with self._lock:
                        self.uploads.append(UploadRecord(index, line, len(line) + len(payload)))
                    conn.sendall(self.options.ack(size).encode())
                elif command == b'DOWNLOAD':
                    size = int(parts[1])
                    limit = self.options.download_limit
                    if limit is not None:
                        conn.sendall(b'a' * limit)
                        conn.shutdown(socket.SHUT_WR)
                        return
                    conn.sendall(b'a' * (size - 1) + b'\n')
        except OSError:
            pass
        finally:
            reader.close()
            conn.close()


@pytest.fixture
def stub_server():
    """Factory fixture: stub_server(**options) -> running StubServer."""
    servers = []

    def start(**kwargs) -> StubServer:
        server = StubServer(StubOptions(**kwargs))
        servers.append(server)
        return server

    yield start

    for server in servers:
        server.close()
