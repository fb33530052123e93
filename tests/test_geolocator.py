from types import SimpleNamespace

import geoip2.errors
import pytest

from analytics_app.schemas.tracking import RequestContext
from analytics_app.services.geolocator import FALLBACK_IP, GeoLocator


class FakeReader:
    """Stands in for geoip2.database.Reader"""

    def __init__(self, known=None):
        self.known = known or {}
        self.lookups = []

    def city(self, ip):
        self.lookups.append(ip)
        if ip not in self.known:
            raise geoip2.errors.AddressNotFoundError(f"{ip} not found")
        country, city, region, tz = self.known[ip]
        return SimpleNamespace(
            country=SimpleNamespace(iso_code=country),
            city=SimpleNamespace(name=city),
            subdivisions=SimpleNamespace(most_specific=SimpleNamespace(iso_code=region)),
            location=SimpleNamespace(time_zone=tz, latitude=52.5, longitude=13.4),
        )


def context(client_host=None, **headers):
    return RequestContext(
        client_host=client_host,
        headers={name.replace("_", "-"): value for name, value in headers.items()},
        url="https://example.com/",
        path="/",
    )


class TestExtractIP:
    """Client IP extraction order"""

    def test_edge_cdn_header_wins(self):
        locator = GeoLocator()
        ctx = context(
            client_host="10.0.0.1",
            cf_connecting_ip="8.8.4.4",
            x_real_ip="1.1.1.1",
            x_forwarded_for="9.9.9.9",
        )
        assert locator.extract_ip(ctx) == "8.8.4.4"

    def test_reverse_proxy_then_forwarded_for(self):
        locator = GeoLocator()
        assert locator.extract_ip(context(x_real_ip="1.1.1.1", x_forwarded_for="9.9.9.9")) == "1.1.1.1"
        assert locator.extract_ip(context(x_forwarded_for="9.9.9.9, 10.0.0.2")) == "9.9.9.9"

    def test_invalid_header_values_are_skipped(self):
        locator = GeoLocator()
        ctx = context(client_host="2001:4860:4860::8888", cf_connecting_ip="garbage", x_real_ip="999.1.1.1")
        assert locator.extract_ip(ctx) == "2001:4860:4860::8888"

    def test_garbage_forwarded_hop_is_skipped(self):
        locator = GeoLocator()
        ctx = context(client_host="10.0.0.1", x_forwarded_for="unknown, 203.0.113.5, 10.0.0.2")
        assert locator.extract_ip(ctx) == "203.0.113.5"

    def test_fallback_when_nothing_valid(self):
        assert GeoLocator().extract_ip(context(client_host="testclient")) == FALLBACK_IP


class TestResolve:
    """Geo lookup"""

    @pytest.mark.parametrize("ip", ["127.0.0.1", "192.168.1.20", "10.1.2.3", "169.254.0.7", "::1"])
    def test_private_ranges_use_local_placeholder(self, ip):
        reader = FakeReader()
        location = GeoLocator(reader=reader).resolve(ip)

        assert location.country == "US"
        assert location.city == "Local"
        assert reader.lookups == []

    def test_public_ip_lookup(self):
        reader = FakeReader({"8.8.8.8": ("DE", "Berlin", "BE", "Europe/Berlin")})
        location = GeoLocator(reader=reader).resolve("8.8.8.8")

        assert location.ip == "8.8.8.8"
        assert location.country == "DE"
        assert location.city == "Berlin"
        assert location.region == "BE"
        assert location.timezone == "Europe/Berlin"

    def test_not_found_returns_ip_only(self):
        location = GeoLocator(reader=FakeReader()).resolve("1.1.1.1")

        assert location.ip == "1.1.1.1"
        assert location.country is None
        assert location.city is None

    def test_missing_database_returns_ip_only(self):
        location = GeoLocator(db_path="/nonexistent/GeoLite2-City.mmdb").resolve("8.8.8.8")

        assert location.ip == "8.8.8.8"
        assert location.country is None

    def test_ipv4_mapped_address_is_unwrapped(self):
        location = GeoLocator().resolve("::ffff:127.0.0.1")

        assert location.ip == "127.0.0.1"
        assert location.city == "Local"
