"""
tcpspeed - TCP bandwidth and latency measurement against speedtest servers.
"""

from .transfer import (
    ByteCounter,
    Direction,
    TransferRequest,
    TransferResult,
    TransferOrchestrator,
    TransferError,
    TransferConnectionError,
    TransferInterrupted,
    WorkerFailure,
    BatchFailed,
    connect,
    ping,
    run_upload_single,
    run_download_single,
    run_upload_multi,
    run_download_multi,
)

__version__ = '0.3.0'

__all__ = [
    'ByteCounter',
    'Direction',
    'TransferRequest',
    'TransferResult',
    'TransferOrchestrator',
    'TransferError',
    'TransferConnectionError',
    'TransferInterrupted',
    'WorkerFailure',
    'BatchFailed',
    'connect',
    'ping',
    'run_upload_single',
    'run_download_single',
    'run_upload_multi',
    'run_download_multi',
]
