"""
IP geolocation.

Client IP extraction honours proxy headers in a fixed order; lookups use a
MaxMind GeoIP2 database when one is present on disk.
"""

import ipaddress
import os
from typing import Optional, Union

import geoip2.database
import geoip2.errors
import structlog

from analytics_app.schemas.tracking import LocationInfo, RequestContext

logger = structlog.get_logger()

# Edge CDN, reverse proxy, generic forwarded-for
IP_HEADERS = ["cf-connecting-ip", "x-real-ip", "x-forwarded-for"]
FALLBACK_IP = "127.0.0.1"

LOCAL_LOCATION = {
    "country": "US",
    "city": "Local",
    "region": "Local",
    "timezone": "America/New_York",
}


def parse_ip(value: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    """Parse an address, unwrapping IPv4-mapped IPv6; None if invalid"""
    try:
        address = ipaddress.ip_address(value.strip())
    except ValueError:
        return None
    if address.version == 6 and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def is_public_ip(address) -> bool:
    return not (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
    )


class GeoLocator:
    """
    Maps IP addresses to coarse locations.

    Private, loopback and link-local addresses short-circuit to a fixed
    local placeholder. Addresses missing from the database yield a
    LocationInfo with only ``ip`` set; lookups never raise.
    """

    def __init__(self, db_path: Optional[str] = None, reader=None):
        """
        Args:
            db_path: Path to a GeoLite2/GeoIP2 City database
            reader: Pre-built reader (anything with a ``city(ip)`` method)
        """
        self.reader = reader
        if self.reader is None and db_path and os.path.exists(db_path):
            try:
                self.reader = geoip2.database.Reader(db_path)
                logger.info("GeoIP database loaded", path=db_path)
            except (OSError, ValueError) as e:
                logger.warning("GeoIP database unavailable", path=db_path, error=str(e))
        elif self.reader is None:
            logger.info("No GeoIP database; public lookups resolve to IP only", path=db_path)

    def extract_ip(self, context: RequestContext) -> str:
        """First syntactically valid address from the proxy headers, then the peer"""
        candidates = [context.header(name) for name in IP_HEADERS]
        candidates.append(context.client_host or "")

        for candidate in candidates:
            # x-forwarded-for may list several hops
            for hop in candidate.split(","):
                hop = hop.strip()
                if hop and parse_ip(hop) is not None:
                    return hop
        return FALLBACK_IP

    def resolve(self, ip: str) -> LocationInfo:
        address = parse_ip(ip or "")
        if address is None:
            return LocationInfo(ip=ip or FALLBACK_IP)

        normalized = str(address)
        if not is_public_ip(address):
            return LocationInfo(ip=normalized, **LOCAL_LOCATION)

        if self.reader is None:
            return LocationInfo(ip=normalized)

        try:
            response = self.reader.city(normalized)
        except (geoip2.errors.AddressNotFoundError, ValueError):
            return LocationInfo(ip=normalized)
        except Exception as e:
            logger.warning("GeoIP lookup failed", ip=normalized, error=str(e))
            return LocationInfo(ip=normalized)

        return LocationInfo(
            ip=normalized,
            country=response.country.iso_code,
            city=response.city.name,
            region=response.subdivisions.most_specific.iso_code,
            timezone=response.location.time_zone,
            latitude=response.location.latitude,
            longitude=response.location.longitude,
        )
