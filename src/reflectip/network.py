# src/reflectip/network.py
"""
Networking module for reflectip.

Address-family handling and name resolution shared by the communicators.
"""

import asyncio
import logging
import socket

from .robustness import InvalidArgumentError, NoAddressForFamilyError

logger = logging.getLogger(__name__)

SUPPORTED_FAMILIES = {
    socket.AF_INET: "IPv4",
    socket.AF_INET6: "IPv6",
}


def family_name(family: int) -> str:
    return SUPPORTED_FAMILIES.get(family, str(family))


def check_family(family: int) -> None:
    if family not in SUPPORTED_FAMILIES:
        raise InvalidArgumentError(f"Selected address family is not supported - {family}", {"family": family})


def parse_family(value) -> int:
    """Accept 4/6, "4"/"6", "ipv4"/"ipv6" or a socket.AF_* constant."""
    if value in SUPPORTED_FAMILIES:
        return value
    aliases = {"4": socket.AF_INET, "ipv4": socket.AF_INET, "6": socket.AF_INET6, "ipv6": socket.AF_INET6}
    family = aliases.get(str(value).strip().lower())
    if family is None:
        raise InvalidArgumentError(f"Selected address family is not supported - {value}", {"family": value})
    return family


async def resolve_address(host: str, port: int, family: int, sock_type: int) -> tuple:
    """Resolve ``host`` to the first socket address of ``family``."""
    loop = asyncio.get_running_loop()
    try:
        infos = await loop.getaddrinfo(host, port, family=family, type=sock_type)
    except socket.gaierror as e:
        raise NoAddressForFamilyError(
            f"No {family_name(family)} address found for {host}", {"host": host, "error": str(e)}
        ) from e

    for info_family, _, _, _, sockaddr in infos:
        if info_family == family:
            logger.debug(f"Resolved {host} to {sockaddr[0]}")
            return sockaddr

    raise NoAddressForFamilyError(f"No {family_name(family)} address found for {host}", {"host": host})
