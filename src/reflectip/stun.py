# src/reflectip/stun.py
"""
Minimal STUN client for public address discovery.

Implements only the RFC 5389 binding transaction: a 20-byte binding request
is sent over a connected UDP socket and the MAPPED-ADDRESS attribute of the
reply is decoded. No message integrity, fingerprint or retransmission.
"""

import asyncio
import ipaddress
import logging
import random
import socket
import struct
from dataclasses import dataclass
from typing import Optional, Union

from .network import resolve_address
from .robustness import (
    MalformedResponseError,
    ReflectionTimeoutError,
    UnsupportedFamilyError,
    UnsupportedSchemeError,
)

logger = logging.getLogger(__name__)

# STUN message types
STUN_BINDING_REQUEST = 0x0001
STUN_BINDING_RESPONSE = 0x0101

# STUN attributes
STUN_ATTR_MAPPED_ADDRESS = 0x0001

STUN_MAGIC_COOKIE = 0x2112A442

STUN_FAMILY_IPV4 = 0x01
STUN_FAMILY_IPV6 = 0x02

HEADER_FORMAT = "!HHI12s"
HEADER_LENGTH = struct.calcsize(HEADER_FORMAT)
ATTR_HEADER_FORMAT = "!HH"
ATTR_HEADER_LENGTH = struct.calcsize(ATTR_HEADER_FORMAT)
TRANSACTION_ID_LENGTH = 12

DEFAULT_SEND_TIMEOUT = 5.0
DEFAULT_RECEIVE_TIMEOUT = 5.0
MAX_RESPONSE_SIZE = 2048

_FAMILY_SIZES = {
    STUN_FAMILY_IPV4: 4,
    STUN_FAMILY_IPV6: 16,
}

_default_rng = random.Random()


@dataclass(frozen=True)
class MappedEndpoint:
    address: Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
    port: int


def new_transaction_id(rng: Optional[random.Random] = None) -> bytes:
    """96 random bits; only uniqueness matters, not unpredictability."""
    return (rng or _default_rng).getrandbits(8 * TRANSACTION_ID_LENGTH).to_bytes(TRANSACTION_ID_LENGTH, "big")


def encode_binding_request(transaction_id: bytes) -> bytes:
    if len(transaction_id) != TRANSACTION_ID_LENGTH:
        raise ValueError(f"Transaction id must be {TRANSACTION_ID_LENGTH} bytes")
    return struct.pack(HEADER_FORMAT, STUN_BINDING_REQUEST, 0, STUN_MAGIC_COOKIE, transaction_id)


def _decode_mapped_address(value: bytes) -> MappedEndpoint:
    if len(value) < 4:
        raise MalformedResponseError("MAPPED-ADDRESS attribute is truncated")
    _reserved, family, port = struct.unpack_from("!BBH", value, 0)
    size = _FAMILY_SIZES.get(family)
    if size is None:
        raise UnsupportedFamilyError(f"Unsupported address family code: {family:#04x}", {"family": family})
    raw = value[4 : 4 + size]
    if len(raw) != size:
        raise MalformedResponseError("MAPPED-ADDRESS attribute is truncated")
    return MappedEndpoint(ipaddress.ip_address(raw), port)


def decode_binding_response(data: bytes, transaction_id: Optional[bytes] = None) -> MappedEndpoint:
    """Decode a binding success response and return its MAPPED-ADDRESS."""
    if len(data) < HEADER_LENGTH:
        raise MalformedResponseError(f"STUN response too short: {len(data)} bytes")

    msg_type, _length, cookie, tid = struct.unpack_from(HEADER_FORMAT, data, 0)
    if msg_type != STUN_BINDING_RESPONSE:
        raise MalformedResponseError(f"Unexpected STUN message type: {msg_type:#06x}")
    if cookie != STUN_MAGIC_COOKIE:
        raise MalformedResponseError(f"Unexpected STUN magic cookie: {cookie:#010x}")
    if transaction_id is not None and tid != transaction_id:
        raise MalformedResponseError("STUN transaction id mismatch")

    offset = HEADER_LENGTH
    while offset + ATTR_HEADER_LENGTH <= len(data):
        attr_type, attr_length = struct.unpack_from(ATTR_HEADER_FORMAT, data, offset)
        offset += ATTR_HEADER_LENGTH
        if offset + attr_length > len(data):
            raise MalformedResponseError(f"STUN attribute {attr_type:#06x} is truncated")
        if attr_type == STUN_ATTR_MAPPED_ADDRESS:
            return _decode_mapped_address(data[offset : offset + attr_length])
        # attributes are padded to a 32-bit boundary
        offset += attr_length + (-attr_length % 4)

    raise MalformedResponseError("STUN response carries no MAPPED-ADDRESS attribute")


async def communicate(
    oracle,
    family: int = socket.AF_INET,
    send_timeout: float = DEFAULT_SEND_TIMEOUT,
    receive_timeout: float = DEFAULT_RECEIVE_TIMEOUT,
    *,
    rng: Optional[random.Random] = None,
) -> MappedEndpoint:
    """Run one binding transaction against a ``stun://`` oracle."""
    if oracle.scheme != "stun":
        raise UnsupportedSchemeError(f"Selected URI has incompatible scheme - {oracle.scheme}", {"endpoint": oracle.endpoint})

    sockaddr = await resolve_address(oracle.host, oracle.port, family, socket.SOCK_DGRAM)
    transaction_id = new_transaction_id(rng)
    loop = asyncio.get_running_loop()

    sock = socket.socket(family, socket.SOCK_DGRAM)
    try:
        sock.setblocking(False)
        await loop.sock_connect(sock, sockaddr)

        try:
            await asyncio.wait_for(loop.sock_sendall(sock, encode_binding_request(transaction_id)), send_timeout)
        except asyncio.TimeoutError:
            raise ReflectionTimeoutError(
                f"STUN send to {oracle.host} timed out after {send_timeout}s", {"endpoint": oracle.endpoint}
            ) from None

        try:
            data = await asyncio.wait_for(loop.sock_recv(sock, MAX_RESPONSE_SIZE), receive_timeout)
        except asyncio.TimeoutError:
            raise ReflectionTimeoutError(
                f"STUN receive from {oracle.host} timed out after {receive_timeout}s", {"endpoint": oracle.endpoint}
            ) from None
    finally:
        sock.close()

    mapped = decode_binding_response(data, transaction_id)
    logger.debug(f"STUN {oracle.host} mapped address {mapped.address}:{mapped.port}")
    return mapped
