"""Client key derivation for per-address rate limiting.

The remote address is coarsened before it is used as a limiter key:

  - IPv4 (including IPv4-mapped IPv6 such as ``::ffff:10.0.0.1``): all four
    octets, joined with ``.``
  - IPv6: the first 6 bytes only, joined with ``.``. One key per /48, so a
    client cannot dodge the limiter by rotating through its own subnet

The remote address itself comes from slowapi's ``get_remote_address``, the
same source the rest of the Starlette rate-limiting ecosystem keys on.
"""

from __future__ import annotations

import ipaddress

from slowapi.util import get_remote_address
from starlette.requests import Request

from cryptouser.utils.logger import get_logger

logger = get_logger(__name__)

# Bytes of an IPv6 address kept in the key (a /48 prefix)
_IPV6_PREFIX_BYTES: int = 6


def client_key_for_address(host: str) -> str:
    """Return the limiter key for a textual remote address.

    Hosts that are not IP literals (e.g. ``testclient``) are used verbatim.
    """
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        logger.debug("Remote host is not an IP literal", host=host)
        return host

    if isinstance(addr, ipaddress.IPv6Address):
        if addr.ipv4_mapped is not None:
            addr = addr.ipv4_mapped
        else:
            return ".".join(str(b) for b in addr.packed[:_IPV6_PREFIX_BYTES])
    return ".".join(str(b) for b in addr.packed)


def get_client_key(request: Request) -> str:
    """Limiter key for the caller of ``request``."""
    return client_key_for_address(get_remote_address(request))
