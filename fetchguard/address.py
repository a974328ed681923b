"""Caller network address resolution"""

import ipaddress
from typing import Mapping, Optional

import httpx
from loguru import logger

from .config import ADDRESS_LOOKUP_URL, DEFAULT_REQUEST_TIMEOUT, UNKNOWN_ADDRESS
from .exceptions import AddressResolutionError

# Placeholders some clients send instead of a real address
_PLACEHOLDER_ADDRESSES = {UNKNOWN_ADDRESS, "client", "0.0.0.0"}


def is_valid_address(address: Optional[str]) -> bool:
    """True for a concrete IPv4 or IPv6 address"""
    if not address or address in _PLACEHOLDER_ADDRESSES or len(address) < 7:
        return False
    try:
        ipaddress.ip_address(address)
    except ValueError:
        return False
    return True


def address_from_headers(headers: Mapping[str, str]) -> str:
    """
    Extract the client address from proxy headers.

    ``X-Forwarded-For`` may list several hops; the first one is the client.
    Falls back to ``X-Real-IP`` and finally to the unknown sentinel.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    forwarded = lowered.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = lowered.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return UNKNOWN_ADDRESS


class AddressResolver:
    """Resolves the caller's network address"""

    async def resolve(self) -> str:
        raise NotImplementedError


class StaticAddressResolver(AddressResolver):
    """Always returns the address it was built with"""

    def __init__(self, address: str):
        self.address = address

    async def resolve(self) -> str:
        return self.address


class HttpAddressResolver(AddressResolver):
    """
    Asks an address echo service who we are.

    The service must answer with a JSON object carrying an ``ip`` field.
    """

    def __init__(
        self,
        url: str = ADDRESS_LOOKUP_URL,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def resolve(self) -> str:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.url)
                response.raise_for_status()
                payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AddressResolutionError(f"Address lookup failed: {e}") from e

        address = payload.get("ip") if isinstance(payload, dict) else None
        if not address:
            raise AddressResolutionError("Address lookup response has no 'ip' field")

        logger.debug(f"Resolved caller address: {address}")
        return address
