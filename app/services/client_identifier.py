"""
Client Identifier - stable key for unauthenticated callers.

Network-address based: callers sharing an address share one anonymous
credit pool.
"""

from collections.abc import Mapping

UNKNOWN_CLIENT = "unknown"


def identify(headers: Mapping[str, str], client_host: str | None) -> str:
    """
    Derive the anonymous-pool key for a request.

    Priority: first X-Forwarded-For hop, X-Real-IP, socket peer address,
    then the "unknown" sentinel. Never fails.
    """
    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if client_host:
        return client_host

    return UNKNOWN_CLIENT
