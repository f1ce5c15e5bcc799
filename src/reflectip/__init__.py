"""reflectip package.

Public IP address discovery through independent HTTP and STUN address oracles.
"""

from .__about__ import __version__
from .consensus import consensus
from .oracles import (
    BUILTIN_ORACLES,
    OracleDescriptor,
    OracleSet,
    Transport,
    all_oracles,
    distributed_google_stun,
    get_oracle,
    http_oracles,
    stun_oracles,
)
from .parsers import IPAddressInfo
from .reflector import Reflector, reflect, reflect_all, reflect_ipv4, reflect_ipv6
from .robustness import (
    InvalidArgumentError,
    MalformedResponseError,
    NoAddressForFamilyError,
    NoConsensusError,
    ReflectionError,
    ReflectionTimeoutError,
    UnsupportedFamilyError,
    UnsupportedSchemeError,
)
from .wildcard import to_sslip_domain, to_wildcard_domain

__all__ = [
    "__version__",
    "BUILTIN_ORACLES",
    "IPAddressInfo",
    "InvalidArgumentError",
    "MalformedResponseError",
    "NoAddressForFamilyError",
    "NoConsensusError",
    "OracleDescriptor",
    "OracleSet",
    "ReflectionError",
    "ReflectionTimeoutError",
    "Reflector",
    "Transport",
    "UnsupportedFamilyError",
    "UnsupportedSchemeError",
    "all_oracles",
    "consensus",
    "distributed_google_stun",
    "get_oracle",
    "http_oracles",
    "reflect",
    "reflect_all",
    "reflect_ipv4",
    "reflect_ipv6",
    "stun_oracles",
    "to_sslip_domain",
    "to_wildcard_domain",
]
