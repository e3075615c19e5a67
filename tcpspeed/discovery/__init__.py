"""
Discovery Module - Speedtest Server Catalog

Lists servers and picks the best one to test against.
"""

from .servers import (
    ServerCatalog, ServerDescriptor, DiscoveryError,
    measure_latency, parse_near, parse_all,
)

__all__ = [
    'ServerCatalog',
    'ServerDescriptor',
    'DiscoveryError',
    'measure_latency',
    'parse_near',
    'parse_all',
]
