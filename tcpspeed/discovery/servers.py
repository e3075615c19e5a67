"""
Server Catalog

Design Decision: Server Sources
===============================

Options Considered:
1. Nearby servers (JSON API)
   - Sorted list with distances, a few dozen entries
   - Good default for picking a test server

2. Full static list (XML)
   - Thousands of servers, no distance information
   - Needed to look up arbitrary server ids

Decision: Support both
- `near()` is the default source
- `all()` is used when the caller asks for every server
- The best server is the lowest-latency one among the 4 nearest
"""

import logging
import math
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Callable, List, Optional

import requests

from ..transfer.errors import TransferError
from ..transfer.protocol import open_connection, ping

logger = logging.getLogger(__name__)

NEAR_SERVERS_URL = "https://www.speedtest.net/api/js/servers?engine=js"
ALL_SERVERS_URL = "https://www.speedtest.net/speedtest-servers-static.php"

BEST_CANDIDATES = 4


class DiscoveryError(Exception):
    """The server list could not be fetched or no server matched."""


@dataclass
class ServerDescriptor:
    """One speedtest server as listed by the catalog."""
    id: str
    host: str
    name: str = ''
    country: str = ''
    cc: str = ''
    sponsor: str = ''
    lat: str = ''
    lon: str = ''
    distance: Optional[int] = None
    latency: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> 'ServerDescriptor':
        distance = data.get('distance')
        try:
            distance = int(distance) if distance not in (None, '') else None
        except (TypeError, ValueError):
            distance = None

        return cls(
            id=str(data.get('id', '')),
            host=data.get('host', ''),
            name=data.get('name', ''),
            country=data.get('country', ''),
            cc=data.get('cc', ''),
            sponsor=data.get('sponsor', ''),
            lat=str(data.get('lat', '')),
            lon=str(data.get('lon', '')),
            distance=distance,
        )

    def summary(self) -> str:
        """Single-line listing."""
        if self.distance is not None:
            return f"[id: {self.id:>5}] {self.distance:>4}Km [{self.name}, {self.cc}]\t{self.sponsor}"
        return f"[id: {self.id:>5}] [{self.name}, {self.cc}]\t{self.sponsor}"


def parse_near(payload: list) -> List[ServerDescriptor]:
    """Parse the JSON server list."""
    return [ServerDescriptor.from_dict(item) for item in payload]


def parse_all(xml_text: str) -> List[ServerDescriptor]:
    """Parse the XML server list; every <server> element carries its fields as attributes."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise DiscoveryError(f"Invalid server list XML: {e}") from e
    return [ServerDescriptor.from_dict(dict(node.attrib)) for node in root.iter('server')]


def measure_latency(host: str, timeout: float = 5.0) -> float:
    """Ping a server once; unreachable servers get an infinite latency."""
    try:
        with open_connection(host, timeout=timeout) as connection:
            return ping(connection)
    except TransferError as e:
        logger.debug(f"Ping to {host} failed: {e}")
        return math.inf


class ServerCatalog:
    """Fetches speedtest server lists over HTTP."""

    def __init__(self, session: Optional[requests.Session] = None,
                 timeout: float = 10.0,
                 latency: Callable[[str], float] = measure_latency):
        self.session = session or requests.Session()
        self.timeout = timeout
        self._latency = latency

    def _get(self, url: str) -> requests.Response:
        logger.info(f"Fetching server list from {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise DiscoveryError(f"Failed to fetch {url}: {e}") from e
        return response

    def near(self) -> List[ServerDescriptor]:
        response = self._get(NEAR_SERVERS_URL)
        try:
            return parse_near(response.json())
        except ValueError as e:
            raise DiscoveryError(f"Invalid server list JSON: {e}") from e

    def all(self) -> List[ServerDescriptor]:
        return parse_all(self._get(ALL_SERVERS_URL).text)

    def list(self, use_all: bool = False) -> List[ServerDescriptor]:
        return self.all() if use_all else self.near()

    def find(self, server_id: str, use_all: bool = False) -> ServerDescriptor:
        """Look up a server by id."""
        for server in self.list(use_all):
            if server.id == server_id:
                logger.info(f"Select server: {server.sponsor} based on id: {server_id}")
                return server
        raise DiscoveryError(f"Can't find server with id {server_id}")

    def best(self, candidates: int = BEST_CANDIDATES) -> ServerDescriptor:
        """Pick the lowest-latency server among the nearest `candidates`."""
        logger.info("Finding best server...")
        servers = sorted(
            self.near(),
            key=lambda s: s.distance if s.distance is not None else math.inf,
        )[:candidates]
        if not servers:
            raise DiscoveryError("Server list is empty")

        for server in servers:
            server.latency = self._latency(server.host)
            logger.info(f"{server.sponsor} ping result: {server.latency:.2f} ms")

        best = min(servers, key=lambda s: s.latency)
        if math.isinf(best.latency):
            raise DiscoveryError("No reachable server among the nearest candidates")
        logger.info(f"Select server {best.sponsor} as best")
        return best
