# src/reflectip/consensus.py
"""
Majority vote over the addresses reported by several oracles.
"""

from collections.abc import Mapping
from typing import Optional

from .parsers import IPAddress


def consensus(results: Mapping[str, IPAddress]) -> Optional[IPAddress]:
    """Return the most frequently reported address.

    Addresses are grouped by their canonical string form. Ties go to the group
    whose first member appears earliest in ``results``; that first member is
    returned. An empty mapping yields None.
    """
    groups: dict[str, list[IPAddress]] = {}
    for address in results.values():
        groups.setdefault(str(address), []).append(address)

    best = None
    for members in groups.values():
        if best is None or len(members) > len(best):
            best = members
    return best[0] if best else None
