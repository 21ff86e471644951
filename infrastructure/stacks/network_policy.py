"""
Network policy surface for the deployment perimeters.

Two independent allow-lists are accepted as comma-separated strings:
- SSH (administrative access to the bastion): IPv4 CIDR blocks only
- HTTPS (public API access): addresses or CIDR blocks; empty means allow all
"""
import ipaddress
from typing import List, Optional

from .errors import InvalidCidrError


def split_allow_list(raw: Optional[str]) -> List[str]:
    """Split a comma-separated allow-list, trimming whitespace and dropping blanks"""
    if not raw:
        return []
    return [entry.strip() for entry in raw.split(",") if entry.strip()]


def parse_ssh_allow_list(raw: Optional[str]) -> List[str]:
    """
    Parse the SSH allow-list.

    Every entry must be an IPv4 block in CIDR notation (e.g. 192.168.1.0/22).
    An empty list produces no SSH rules at all.

    Raises:
        InvalidCidrError: If an entry is malformed
    """
    entries = split_allow_list(raw)
    for entry in entries:
        if "/" not in entry:
            raise InvalidCidrError(entry, "SSH")
        try:
            network = ipaddress.ip_network(entry, strict=False)
        except ValueError:
            raise InvalidCidrError(entry, "SSH")
        if network.version != 4:
            raise InvalidCidrError(entry, "SSH")
    return entries


def parse_https_allow_list(raw: Optional[str]) -> List[str]:
    """
    Parse the HTTPS allow-list.

    Entries may be single addresses or CIDR blocks. An empty result means
    the HTTPS perimeter is open to everyone.

    Raises:
        InvalidCidrError: If an entry is malformed
    """
    entries = split_allow_list(raw)
    for entry in entries:
        try:
            ipaddress.ip_network(entry, strict=False)
        except ValueError:
            raise InvalidCidrError(entry, "HTTPS")
    return entries
