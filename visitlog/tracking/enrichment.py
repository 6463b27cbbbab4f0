"""
enrichment.py — request-derived visitor context.

Everything here is read from reverse-proxy / edge headers; nothing is computed
by visitlog itself:
  - client IP:   first hop of X-Forwarded-For, loopback when absent
  - geolocation: <prefix>country / country-region / city / timezone / as-org /
                 latitude / longitude (prefix defaults to "x-vercel-ip-")
  - user agent:  parsed with the `user-agents` package into browser / OS / device type
"""
from dataclasses import dataclass, field
from typing import Mapping, Optional
from urllib.parse import unquote

from user_agents import parse as parse_user_agent

from visitlog.config import settings

DEFAULT_IP = "127.0.0.1"
DEFAULT_DEVICE_TYPE = "desktop"

# ua-parser reports "Other" when it cannot identify a family
_UNKNOWN_FAMILY = "Other"


@dataclass(frozen=True)
class UserAgentInfo:
    browser_name: Optional[str]
    operating_system: Optional[str]
    device_type: str


@dataclass(frozen=True)
class RequestContext:
    """Snapshot of everything a tracking write derives from the HTTP request."""
    ip_address: str
    user_agent: str
    geo_info: dict = field(default_factory=dict)
    browser_name: Optional[str] = None
    operating_system: Optional[str] = None
    device_type: str = DEFAULT_DEVICE_TYPE

    @property
    def country(self) -> Optional[str]:
        return self.geo_info.get("country")

    @property
    def city(self) -> Optional[str]:
        return self.geo_info.get("city")


def client_ip(headers: Mapping[str, str]) -> str:
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return DEFAULT_IP


def geo_from_headers(headers: Mapping[str, str], prefix: Optional[str] = None) -> dict:
    """
    Build the geo snapshot from edge headers. Missing headers become None.
    City names arrive percent-encoded (e.g. "S%C3%A3o%20Paulo").
    """
    prefix = (prefix or settings.geo_header_prefix).lower()

    def header(name: str) -> Optional[str]:
        return headers.get(f"{prefix}{name}") or None

    city = header("city")
    return {
        "country": header("country"),
        "region": header("country-region"),
        "city": unquote(city) if city else None,
        "timezone": header("timezone"),
        "isp": header("as-org"),
        "latitude": header("latitude"),
        "longitude": header("longitude"),
    }


def parse_device(user_agent: str) -> UserAgentInfo:
    """Browser / OS families and a mobile / tablet / desktop classification."""
    ua = parse_user_agent(user_agent or "")

    browser = ua.browser.family
    os_name = ua.os.family
    if ua.is_tablet:
        device_type = "tablet"
    elif ua.is_mobile:
        device_type = "mobile"
    else:
        device_type = DEFAULT_DEVICE_TYPE

    return UserAgentInfo(
        browser_name=None if browser == _UNKNOWN_FAMILY else browser,
        operating_system=None if os_name == _UNKNOWN_FAMILY else os_name,
        device_type=device_type,
    )


def build_request_context(
    headers: Mapping[str, str],
    fallback_user_agent: Optional[str] = None,
) -> RequestContext:
    """
    Resolve IP, geo and user agent for one request.
    The User-Agent header wins; fallback_user_agent (client-reported) is used
    only when the header is missing.
    """
    user_agent = headers.get("user-agent") or fallback_user_agent or ""
    device = parse_device(user_agent)
    return RequestContext(
        ip_address=client_ip(headers),
        user_agent=user_agent,
        geo_info=geo_from_headers(headers),
        browser_name=device.browser_name,
        operating_system=device.operating_system,
        device_type=device.device_type,
    )
