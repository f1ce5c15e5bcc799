# src/reflectip/wildcard.py
"""
Wildcard DNS names (sslip.io, nip.io style) for a reflected address.
"""

import ipaddress
from typing import Optional

from .parsers import IPAddress
from .robustness import InvalidArgumentError

SSLIP_DOMAIN = "sslip.io"


def to_wildcard_domain(
    address: IPAddress,
    provider: str,
    sub_domain: Optional[str] = None,
    domain: Optional[str] = None,
    use_dash_separator: bool = True,
) -> str:
    """Build ``<address>.<provider>``.

    IPv4 dots become dashes when ``use_dash_separator`` is set; IPv6 colons
    always do. ``domain`` replaces ``provider`` as the suffix when given.
    """
    if not provider or not provider.strip():
        raise InvalidArgumentError("Please specify wildcard domain provider.")
    if address is None:
        raise InvalidArgumentError("Please specify an address.")

    if isinstance(address, ipaddress.IPv4Address):
        prefix = str(address)
        if sub_domain and sub_domain.strip():
            prefix = f"{sub_domain}.{prefix}"
        if use_dash_separator:
            prefix = prefix.replace(".", "-")
    elif isinstance(address, ipaddress.IPv6Address):
        prefix = str(address).replace(":", "-")
        if sub_domain and sub_domain.strip():
            prefix = f"{sub_domain}-{prefix}"
    else:
        raise InvalidArgumentError(f"Unsupported address type '{type(address).__name__}' found.")

    suffix = domain if domain and domain.strip() else provider
    return f"{prefix}.{suffix}"


def to_sslip_domain(
    address: IPAddress,
    sub_domain: Optional[str] = None,
    domain: Optional[str] = None,
    use_dash_separator: bool = True,
) -> str:
    return to_wildcard_domain(address, SSLIP_DOMAIN, sub_domain, domain, use_dash_separator)
