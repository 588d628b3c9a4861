"""URL validation for provider source URLs.

Every URL in a provider descriptor must be absolute and point at a public
host. Local hostnames and private address literals are rejected when the
registry is loaded, before anything is fetched.
"""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from urllib.parse import urlparse

from pricewatch.config.settings import URLPolicyConfig

PRIVATE_NETWORKS = [
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]


@dataclass(frozen=True)
class URLValidationResult:
    allowed: bool
    reason: str


def _is_private_ip(addr: ipaddress.IPv4Address | ipaddress.IPv6Address) -> str | None:
    """Return the matching private network string if addr is private, else None."""
    for network in PRIVATE_NETWORKS:
        if addr in network:
            return str(network)
    return None


def validate_provider_url(url: str, policy: URLPolicyConfig) -> URLValidationResult:
    """Validate a provider source URL against the policy.

    Checks:
    1. Scheme must be in allowed_schemes (default: http, https)
    2. Hostname must be present, and not localhost or .local
    3. IP literals must not be in private/reserved ranges
    4. When resolve_dns is set, every resolved address is checked too
    """
    parsed = urlparse(url)

    if parsed.scheme not in policy.allowed_schemes:
        return URLValidationResult(
            allowed=False,
            reason=f"Scheme '{parsed.scheme}' not allowed",
        )

    hostname = parsed.hostname or ""
    if not hostname:
        return URLValidationResult(allowed=False, reason="No hostname in URL")

    if policy.block_local_hostnames:
        if hostname == "localhost" or hostname.endswith(".local"):
            return URLValidationResult(
                allowed=False,
                reason=f"Hostname '{hostname}' is blocked",
            )

    if not policy.block_private_ips:
        return URLValidationResult(allowed=True, reason="OK")

    try:
        addr = ipaddress.ip_address(hostname)
    except ValueError:
        addr = None

    if addr is not None:
        match = _is_private_ip(addr)
        if match:
            return URLValidationResult(
                allowed=False,
                reason=f"IP {addr} is in private range {match}",
            )
        return URLValidationResult(allowed=True, reason="OK")

    if policy.resolve_dns:
        try:
            infos = socket.getaddrinfo(hostname, None)
        except socket.gaierror:
            return URLValidationResult(
                allowed=False,
                reason=f"Cannot resolve hostname '{hostname}'",
            )
        for info in infos:
            resolved = ipaddress.ip_address(info[4][0])
            match = _is_private_ip(resolved)
            if match:
                return URLValidationResult(
                    allowed=False,
                    reason=f"IP {resolved} is in private range {match}",
                )

    return URLValidationResult(allowed=True, reason="OK")
