"""
Transfer Module - Bandwidth Measurement Engine

Handles the speedtest wire protocol, upload/download executors, live
sampling and multi-connection orchestration.
"""

from .counter import ByteCounter
from .errors import (
    TransferError, TransferConnectionError, TransferInterrupted,
    WorkerFailure, BatchFailed,
)
from .protocol import (
    Command, SpeedtestConnection, open_connection, connect, identify, ping,
)
from .payload import PayloadGenerator
from .executor import run_upload, run_download, throughput, to_mbps
from .sampler import LiveSampler, SpeedSample
from .orchestrator import (
    Direction, TransferRequest, TransferResult, TransferOrchestrator,
    run_upload_single, run_download_single,
    run_upload_multi, run_download_multi,
)

__all__ = [
    'ByteCounter',
    'TransferError',
    'TransferConnectionError',
    'TransferInterrupted',
    'WorkerFailure',
    'BatchFailed',
    'Command',
    'SpeedtestConnection',
    'open_connection',
    'connect',
    'identify',
    'ping',
    'PayloadGenerator',
    'run_upload',
    'run_download',
    'throughput',
    'to_mbps',
    'LiveSampler',
    'SpeedSample',
    'Direction',
    'TransferRequest',
    'TransferResult',
    'TransferOrchestrator',
    'run_upload_single',
    'run_download_single',
    'run_upload_multi',
    'run_download_multi',
]
