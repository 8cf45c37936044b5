"""
Egress Guard: enforce the outbound allowlist for market data providers

Every provider call is validated here before any connection is opened.
Only https requests to allowlisted domains are permitted; raw IPs are refused.
"""
import ipaddress
import logging
from typing import Optional, Set
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

# Allowlisted domains (exact matches and subdomains)
ALLOWLISTED_DOMAINS: Set[str] = {
    # Binance spot market data
    "api.binance.com",
    "api.binance.us",
    "data-api.binance.vision",
    # CoinGecko API (public and pro)
    "api.coingecko.com",
    "pro-api.coingecko.com",
}


class EgressGuardError(Exception):
    """Raised when an outbound request violates allowlist rules"""
    pass


def is_raw_ip(host: str) -> bool:
    """Check if a host string is a raw IP address"""
    try:
        ipaddress.ip_address(host)
        return True
    except ValueError:
        return False


def is_domain_allowed(host: str) -> bool:
    """
    Check if a domain is in the allowlist.
    Supports exact matches and subdomains.
    """
    host = host.lower()
    if host in ALLOWLISTED_DOMAINS:
        return True
    return any(host.endswith("." + allowed) for allowed in ALLOWLISTED_DOMAINS)


def validate_outbound_url(url: str, calling_module: str = "unknown") -> str:
    """
    Validate that an outbound URL is allowed.

    Returns:
        The URL unchanged when it passes

    Raises:
        EgressGuardError: If the URL violates allowlist rules
    """
    parsed = urlparse(url)
    host = parsed.hostname

    if not host:
        raise EgressGuardError(f"Invalid URL (no hostname): {url} (called from {calling_module})")

    if parsed.scheme != "https":
        raise EgressGuardError(f"Only https is allowed for outbound requests: {url} (called from {calling_module})")

    if is_raw_ip(host):
        error_msg = (
            f"Outbound request to raw IP address {host} blocked. "
            f"URL: {url}, Called from: {calling_module}."
        )
        logger.error(f"[EGRESS_GUARD] {error_msg}")
        raise EgressGuardError(error_msg)

    if not is_domain_allowed(host):
        error_msg = (
            f"Outbound request to non-allowlisted domain {host} blocked. "
            f"URL: {url}, Called from: {calling_module}. "
            f"If this is legitimate, add it to ALLOWLISTED_DOMAINS in egress_guard.py"
        )
        logger.error(f"[EGRESS_GUARD] {error_msg}")
        raise EgressGuardError(error_msg)

    return url


def log_outbound_request(
    url: str,
    method: str = "GET",
    status_code: Optional[int] = None,
    calling_module: str = "unknown",
    elapsed_ms: Optional[float] = None,
) -> None:
    """Log an outbound request for auditing."""
    host = urlparse(url).hostname or "unknown"
    logger.debug(
        f"[EGRESS_GUARD] Outbound {method} to {host} "
        f"(status={status_code}, module={calling_module}, elapsed_ms={elapsed_ms})"
    )
