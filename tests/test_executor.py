import logging
import time

import pytest

from tcpspeed.transfer import (
    ByteCounter, PayloadGenerator, TransferError, TransferInterrupted,
    WorkerFailure, open_connection, run_download, run_upload,
)
from tcpspeed.transfer.protocol import MB


def test_upload_counts_exactly_target_bytes(stub_server):
    server = stub_server()
    counter = ByteCounter()
    connection = open_connection(server.host)

    rate = run_upload(connection, 5_000_000, counter, seed=1)

    assert rate > 0
    assert counter.value == 5_000_000
    assert connection.closed

    record, = server.uploads
    assert record.handshake == b"UPLOAD 5000000 0\r\n"
    assert record.total_bytes == 5_000_000


def test_upload_fails_on_short_ack(stub_server):
    server = stub_server(ack=lambda n: "ok 4999999\n")

    with pytest.raises(TransferInterrupted) as info:
        run_upload(open_connection(server.host), 5_000_000, seed=1)

    assert info.value.requested == 5_000_000
    assert info.value.observed == "ok 4999999\n"


def test_upload_accepts_ack_containing_larger_number(stub_server):
    server = stub_server(ack=lambda n: "15000000 bytes\n")
    assert run_upload(open_connection(server.host), 5_000_000, seed=1) > 0


def test_upload_smaller_than_handshake_is_rejected(stub_server):
    server = stub_server()
    connection = open_connection(server.host)
    with pytest.raises(ValueError):
        run_upload(connection, 10)
    assert connection.closed
    assert server.uploads == []


def test_upload_to_dropped_connection_fails(stub_server):
    server = stub_server(drop_connections={0})
    with pytest.raises(TransferError):
        run_upload(open_connection(server.host), 4 * MB, seed=1)


def test_download_counts_exactly_target_bytes(stub_server):
    server = stub_server()
    counter = ByteCounter()
    connection = open_connection(server.host)

    rate = run_download(connection, 1_048_576, counter)

    assert rate > 0
    assert counter.value == 1_048_576
    assert connection.closed
    assert server.commands == [b"DOWNLOAD 1048576\r\n"]


def test_download_spanning_many_buffers(stub_server):
    server = stub_server()
    counter = ByteCounter()
    run_download(open_connection(server.host), 5 * MB + 3, counter)
    assert counter.value == 5 * MB + 3


def test_download_fails_when_server_closes_early(stub_server):
    server = stub_server(download_limit=500_000)
    counter = ByteCounter()

    with pytest.raises(TransferInterrupted) as info:
        run_download(open_connection(server.host), 1_048_576, counter)

    assert info.value.requested == 1_048_576
    assert info.value.observed == 500_000
    assert counter.value == 500_000


@pytest.mark.parametrize("direction", ["upload", "download"])
def test_throughput_matches_independent_measurement(stub_server, direction):
    server = stub_server()
    size = 8 * MB
    run = run_upload if direction == "upload" else run_download

    start = time.perf_counter()
    rate = run(open_connection(server.host), size)
    harness_elapsed = time.perf_counter() - start

    independent = size * 8 / harness_elapsed
    # The executor times a sub-interval of what the harness timed
    assert rate >= independent * 0.99
    assert rate < independent * 100


def test_upload_reports_to_injected_logger(stub_server, monkeypatch, caplog):
    def exhausted(self, length):
        raise RuntimeError("entropy exhausted")

    monkeypatch.setattr(PayloadGenerator, 'random_bytes', exhausted)
    caplog.set_level(logging.DEBUG)
    server = stub_server()
    log = logging.getLogger("upload-run")

    with pytest.raises(WorkerFailure):
        run_upload(open_connection(server.host), 200_000, log=log)

    assert {r.name for r in caplog.records} == {"upload-run"}
    messages = [r.getMessage() for r in caplog.records]
    assert any(m.startswith("Sending handshake") for m in messages)
    assert any(m.startswith("Payload generator failed") for m in messages)
