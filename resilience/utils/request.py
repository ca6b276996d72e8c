"""Request utility functions."""

import ipaddress

from fastapi import Request

from resilience.core.config import settings


def _trusted_proxy_networks() -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    networks = []
    for entry in settings.TRUSTED_PROXIES.split(","):
        entry = entry.strip()
        if not entry or entry == "*":
            continue
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            continue
    return networks


def is_trusted_proxy(host: str | None) -> bool:
    """Whether forwarding headers sent by ``host`` may be believed."""
    if not host:
        return False
    if any(entry.strip() == "*" for entry in settings.TRUSTED_PROXIES.split(",")):
        return True
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return any(address in network for network in _trusted_proxy_networks())


def get_client_ip(request: Request) -> str:
    """
    Extract real client IP, respecting proxy headers from trusted proxies.

    Forwarding headers are only read when the direct peer is a trusted proxy:
    1. X-Forwarded-For ("client, proxy1, proxy2"), walked right to left past
       trusted proxies so a client-supplied prefix is ignored
    2. X-Real-IP (single IP from nginx)
    3. Direct connection IP
    """
    direct_ip = request.client.host if request.client else None

    if is_trusted_proxy(direct_ip):
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            chain = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
            for hop in reversed(chain):
                if not is_trusted_proxy(hop):
                    return hop
            if chain:
                return chain[0]

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()

    if direct_ip:
        return direct_ip

    return "unknown"


def attempt_ip(request: Request, reported_ip: str | None) -> str | None:
    """
    IP to throttle a login attempt on.

    The login frontend reports the end user's address in the body; without
    it the connecting address is used. Anything that is not a valid IP
    (e.g. a test client hostname) means no IP-based throttling.
    """
    candidate = reported_ip or get_client_ip(request)
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None
