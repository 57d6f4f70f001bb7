"""Hostname safety checks used before and after every outbound fetch.

Literal IPs are matched against private, loopback and link-local ranges.
DNS names are not resolved here: a public-looking name that resolves to a
private address is not caught (see DESIGN.md).
"""

import ipaddress
import logging
import re
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

BLOCKED_NETWORKS = [
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]

# Shorthand IPv4 forms ("2130706433", "0x7f.1", "017700000001") that
# getaddrinfo happily maps to an address.
_NUMERIC_HOST_RE = re.compile(r"^(0x[0-9a-f]+|[0-9]+)(\.(0x[0-9a-f]*|[0-9]*))*$")


class UnsafeTargetError(Exception):
    """Raised when an outbound request targets a blocked hostname."""

    def __init__(self, hostname: str):
        self.hostname = hostname
        super().__init__(f"Blocked hostname: {hostname or '<empty>'}")


def get_hostname(url: str) -> str:
    """Lower-cased hostname of ``url``, or an empty string if unparseable."""
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def _is_blocked_ip(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return any(ip in net for net in BLOCKED_NETWORKS if net.version == ip.version)


def is_private_hostname(hostname: str) -> bool:
    """Return True if ``hostname`` must not be fetched server-side."""
    host = (hostname or "").strip().lower()
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    host = host.rstrip(".")
    if not host:
        return True
    if host == "localhost" or host.endswith(".localhost"):
        return True
    if host.endswith(".local"):
        return True

    try:
        ip = ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        ip = None
    if ip is not None:
        return _is_blocked_ip(ip)

    if _NUMERIC_HOST_RE.match(host):
        # Not a canonical dotted quad, so ip_address() refused it above
        return True

    return False


def assert_public_hostname(hostname: str) -> None:
    """Raise UnsafeTargetError if ``hostname`` is private."""
    if is_private_hostname(hostname):
        logger.warning(f"Blocked outbound request to {hostname or '<empty>'}")
        raise UnsafeTargetError(hostname)


async def guard_outbound_request(request) -> None:
    """httpx request event hook: runs for the first request and every redirect hop."""
    assert_public_hostname(request.url.host)
