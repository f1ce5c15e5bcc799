# src/reflectip/oracles.py
"""
Oracle descriptors and the built-in oracle registry.

An oracle is a third-party endpoint that reports the address it saw the
caller connect from. Descriptors are immutable; an OracleSet keeps them in
insertion order, keyed by endpoint.
"""

import logging
import random
from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlsplit

from . import parsers
from .robustness import InvalidArgumentError, UnsupportedSchemeError

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"https": 443, "http": 80, "stun": 3478}


class Transport(Enum):
    TLS_HTTP = "tls_http"
    UDP_STUN = "udp_stun"


TRANSPORT_SCHEMES = {
    Transport.TLS_HTTP: ("https", "http"),
    Transport.UDP_STUN: ("stun",),
}


@dataclass(frozen=True)
class OracleDescriptor:
    name: str
    endpoint: str
    transport: Transport
    parser: Optional[Callable[[Any], Awaitable[Optional[parsers.IPAddress]]]] = None
    info_parser: Optional[Callable[[Any], Awaitable[Optional[parsers.IPAddressInfo]]]] = None

    def __post_init__(self):
        scheme = self.scheme
        if scheme not in TRANSPORT_SCHEMES[self.transport]:
            raise UnsupportedSchemeError(
                f"Scheme '{scheme}' does not match transport {self.transport.value}",
                {"endpoint": self.endpoint},
            )
        if not self.host:
            raise InvalidArgumentError(f"Endpoint has no host: {self.endpoint}")
        if self.transport is Transport.TLS_HTTP and self.parser is None:
            raise InvalidArgumentError(f"HTTP oracle '{self.name}' needs a response parser")

    @property
    def scheme(self) -> str:
        return urlsplit(self.endpoint).scheme.lower()

    @property
    def host(self) -> str:
        return urlsplit(self.endpoint).hostname or ""

    @property
    def port(self) -> int:
        parts = urlsplit(self.endpoint)
        return parts.port or DEFAULT_PORTS[parts.scheme.lower()]

    @property
    def path_and_query(self) -> str:
        parts = urlsplit(self.endpoint)
        path = parts.path or "/"
        return f"{path}?{parts.query}" if parts.query else path


def http_oracle(name: str, endpoint: str, parser, info_parser=None) -> OracleDescriptor:
    return OracleDescriptor(name, endpoint, Transport.TLS_HTTP, parser, info_parser)


def stun_oracle(name: str, endpoint: str) -> OracleDescriptor:
    return OracleDescriptor(name, endpoint, Transport.UDP_STUN)


class OracleSet:
    """Ordered, endpoint-deduplicated collection of oracle descriptors."""

    def __init__(self, oracles: Iterable[OracleDescriptor] = ()):
        self._oracles: dict[str, OracleDescriptor] = {}
        self.extend(oracles)

    def add(self, oracle: OracleDescriptor) -> bool:
        """Add an oracle; returns False when its endpoint is already present."""
        if oracle.endpoint in self._oracles:
            logger.debug(f"Ignoring duplicate oracle endpoint {oracle.endpoint}")
            return False
        self._oracles[oracle.endpoint] = oracle
        return True

    def extend(self, oracles: Iterable[OracleDescriptor]) -> "OracleSet":
        for oracle in oracles:
            self.add(oracle)
        return self

    def __iter__(self) -> Iterator[OracleDescriptor]:
        return iter(self._oracles.values())

    def __len__(self) -> int:
        return len(self._oracles)

    def __contains__(self, item) -> bool:
        if isinstance(item, OracleDescriptor):
            item = item.endpoint
        return item in self._oracles

    def __getitem__(self, endpoint: str) -> OracleDescriptor:
        return self._oracles[endpoint]

    def __repr__(self):
        return f"OracleSet({list(self._oracles)})"


CLOUDFLARE_TRACE = http_oracle(
    "cloudflare-trace", "https://www.cloudflare.com/cdn-cgi/trace", parsers.parse_cloudflare_trace
)
IPIFY = http_oracle("ipify", "https://api64.ipify.org/?format=json", parsers.parse_json_address)
SEEIP = http_oracle("seeip", "https://api.seeip.org/jsonip", parsers.parse_json_address)
IP6ME = http_oracle("ip6me", "https://ip6.me/api/", parsers.parse_csv_address)
CURLMYIP = http_oracle("curlmyip", "https://curlmyip.org/", parsers.parse_simple_address)
ICANHAZIP = http_oracle("icanhazip", "https://icanhazip.com/", parsers.parse_simple_address)
IFCONFIG = http_oracle(
    "ifconfig", "https://ifconfig.co/json", parsers.parse_json_address, parsers.parse_ifconfig_info
)

GOOGLE_STUN_ENDPOINTS = (
    "stun://stun.l.google.com:19302",
    "stun://stun1.l.google.com:19302",
    "stun://stun2.l.google.com:19302",
    "stun://stun3.l.google.com:19302",
    "stun://stun4.l.google.com:19302",
)

GOOGLE_STUN = stun_oracle("google-stun", GOOGLE_STUN_ENDPOINTS[0])
GOOGLE_STUN_1 = stun_oracle("google-stun1", GOOGLE_STUN_ENDPOINTS[1])
GOOGLE_STUN_2 = stun_oracle("google-stun2", GOOGLE_STUN_ENDPOINTS[2])
GOOGLE_STUN_3 = stun_oracle("google-stun3", GOOGLE_STUN_ENDPOINTS[3])
GOOGLE_STUN_4 = stun_oracle("google-stun4", GOOGLE_STUN_ENDPOINTS[4])

HTTP_ORACLES = (CLOUDFLARE_TRACE, IPIFY, SEEIP, IP6ME, CURLMYIP, ICANHAZIP, IFCONFIG)
STUN_ORACLES = (GOOGLE_STUN, GOOGLE_STUN_1, GOOGLE_STUN_2, GOOGLE_STUN_3, GOOGLE_STUN_4)
BUILTIN_ORACLES = HTTP_ORACLES + STUN_ORACLES


def distributed_google_stun(rng: random.Random | None = None) -> OracleDescriptor:
    """Pick one of the Google STUN hosts using the given random source."""
    rng = rng or random.Random()
    return stun_oracle("distributed-google-stun", rng.choice(GOOGLE_STUN_ENDPOINTS))


def http_oracles() -> OracleSet:
    return OracleSet(HTTP_ORACLES)


def stun_oracles(rng: random.Random | None = None) -> OracleSet:
    """Every Google STUN host, plus one distributed pick.

    The distributed pick shares its endpoint with one of the fixed hosts, so
    the set keeps the fixed entry and the pick is dropped as a duplicate.
    """
    return OracleSet(STUN_ORACLES).extend([distributed_google_stun(rng)])


def all_oracles() -> OracleSet:
    """Every HTTP oracle plus the primary Google STUN server."""
    return OracleSet(HTTP_ORACLES + (GOOGLE_STUN,))


ORACLE_GROUPS = {
    "all": all_oracles,
    "http": http_oracles,
    "stun": stun_oracles,
}


def get_oracle(name: str) -> OracleDescriptor:
    for oracle in BUILTIN_ORACLES:
        if oracle.name == name:
            return oracle
    raise InvalidArgumentError(f"Unknown oracle: {name}", {"known": [o.name for o in BUILTIN_ORACLES]})


def oracle_group(group: str) -> OracleSet:
    try:
        return ORACLE_GROUPS[group]()
    except KeyError:
        raise InvalidArgumentError(f"Unknown oracle group: {group}", {"known": sorted(ORACLE_GROUPS)}) from None
