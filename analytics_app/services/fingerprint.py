"""
Visitor fingerprinting.

Derives a stable visitor ID and a fresh session ID from coarse request
attributes. Pure functions of the input: no I/O, no state.
"""

import hashlib
import ipaddress
import secrets
from datetime import datetime
from typing import Optional

from analytics_app.clock import utc_now
from analytics_app.schemas.tracking import Fingerprint, RequestContext

HASH_LENGTH = 16


def hash_string(value: str) -> str:
    """SHA-256 hex digest truncated to 16 characters"""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def normalize_ip(ip: str) -> str:
    """
    Reduce an IP address to a privacy-preserving prefix.

    IPv4 keeps the first three octets (a.b.c.0); IPv6 keeps the /64 prefix.
    IPv4-mapped IPv6 addresses are treated as IPv4. Anything unparseable is
    returned unchanged.

    Examples:
        >>> normalize_ip("203.0.113.77")
        '203.0.113.0'
        >>> normalize_ip("2001:db8:1:2:3:4:5:6")
        '2001:db8:1:2::'
    """
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return ip

    if address.version == 6 and address.ipv4_mapped is not None:
        address = address.ipv4_mapped

    prefix = 24 if address.version == 4 else 64
    network = ipaddress.ip_network(f"{address}/{prefix}", strict=False)
    return str(network.network_address)


class VisitorFingerprint:
    """
    Fingerprint generator.

    visitor_id = hash(normalized IP | User-Agent | Accept-Language | Accept-Encoding)
    session_id = hash(visitor_id | UTC date | UTC hour | random nonce)

    The nonce makes every session ID unique; recognising that two requests
    belong to the same session is the session store's job, not this one's.
    """

    def generate_visitor_id(self, ip: str, context: RequestContext) -> str:
        components = [
            normalize_ip(ip or ""),
            context.user_agent,
            context.header("accept-language"),
            context.header("accept-encoding"),
        ]
        return hash_string("|".join(components))

    def generate_session_id(self, visitor_id: str, timestamp: Optional[datetime] = None) -> str:
        moment = timestamp or utc_now()
        components = [
            visitor_id,
            moment.date().isoformat(),
            str(moment.hour),
            secrets.token_hex(8),
        ]
        return hash_string("|".join(components))

    def identify(self, ip: str, context: RequestContext) -> Fingerprint:
        """Compute both identifiers for one request"""
        visitor_id = self.generate_visitor_id(ip, context)
        return Fingerprint(
            visitor_id=visitor_id,
            session_id=self.generate_session_id(visitor_id),
        )
