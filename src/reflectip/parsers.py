# src/reflectip/parsers.py
"""
Response parsers for HTTP address oracles.

Each parser receives the ResponseStream returned by the TLS-HTTP communicator,
positioned at the start of the body, and returns an address or None.
"""

import ipaddress
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

_TRACE_IP_LINE = re.compile(r"^ip=(?P<value>.+)$", re.MULTILINE)


@dataclass
class IPAddressInfo:
    address: Optional[IPAddress] = None
    country: Optional[str] = None
    country_iso: Optional[str] = None
    city: Optional[str] = None
    hostname: Optional[str] = None
    asn: Optional[int] = None
    asn_organization: Optional[str] = None
    time_zone: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


def to_address(value: Any) -> Optional[IPAddress]:
    """Parse a textual address, returning None instead of raising."""
    if not isinstance(value, str):
        return None
    try:
        return ipaddress.ip_address(value.strip())
    except ValueError:
        return None


async def _read_text(stream) -> str:
    data = await stream.read()
    return data.decode("utf-8", errors="replace")


async def _read_json(stream) -> Optional[dict]:
    text = await _read_text(stream)
    try:
        doc = json.loads(text)
    except json.JSONDecodeError as e:
        logger.debug(f"Oracle returned invalid JSON: {e}")
        return None
    return doc if isinstance(doc, dict) else None


async def parse_simple_address(stream) -> Optional[IPAddress]:
    """Body is the address itself, possibly surrounded by whitespace."""
    return to_address(await _read_text(stream))


async def parse_json_address(stream) -> Optional[IPAddress]:
    """Body is a JSON object carrying the address in its ``ip`` field."""
    doc = await _read_json(stream)
    if doc is None:
        return None
    return to_address(doc.get("ip"))


async def parse_cloudflare_trace(stream) -> Optional[IPAddress]:
    """Body is a Cloudflare trace listing (``key=value`` lines)."""
    text = await _read_text(stream)
    if not text.strip():
        return None
    match = _TRACE_IP_LINE.search(text)
    if not match:
        return None
    return to_address(match.group("value"))


async def parse_csv_address(stream) -> Optional[IPAddress]:
    """Body is an ip6.me style record: ``IPv4,203.0.113.7,...``."""
    fields = (await _read_text(stream)).strip().split(",")
    if len(fields) < 2:
        return None
    return to_address(fields[1])


def _parse_asn(value: Any) -> Optional[int]:
    if isinstance(value, int):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    digits = value.strip()
    # ASN may come as "AS13335"
    if digits[:2].upper() == "AS":
        digits = digits[2:]
    try:
        return int(digits)
    except ValueError:
        return None


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


async def parse_ifconfig_info(stream) -> Optional[IPAddressInfo]:
    """Parse the detailed ifconfig.co JSON document."""
    doc = await _read_json(stream)
    if doc is None:
        return None
    return IPAddressInfo(
        address=to_address(doc.get("ip")),
        country=doc.get("country"),
        country_iso=doc.get("country_iso"),
        city=doc.get("city"),
        hostname=doc.get("hostname"),
        asn=_parse_asn(doc.get("asn")),
        asn_organization=doc.get("asn_org"),
        time_zone=doc.get("time_zone"),
        latitude=_number(doc.get("latitude")),
        longitude=_number(doc.get("longitude")),
    )
