"""
Device classification from the User-Agent header.

Parsing is delegated to the ``user-agents`` library; bot detection adds a
substring denylist and a few heuristics on top of it.
"""

import re
from typing import List, Optional

import structlog
from user_agents import parse as parse_user_agent

from analytics_app.schemas.tracking import DeviceInfo

logger = structlog.get_logger()

# Case-insensitive substrings of known bots, crawlers and automation tools
BOT_KEYWORDS = [
    "bot", "crawler", "spider", "scraper", "feed", "slurp", "index", "archiv",
    "search", "google", "facebook", "twitter", "linkedin", "whatsapp",
    "telegram", "curl", "wget", "python", "java", "okhttp", "postman",
]

# Markers every mainstream browser UA carries at least one of
BROWSER_MARKERS = ["Mozilla", "AppleWebKit", "Gecko", "Edge"]

SCRIPTED_CLIENT_PATTERNS = [
    re.compile(r"^[a-zA-Z]+/[\d.]+$"),  # bare "name/version"
    re.compile(r"libwww", re.IGNORECASE),
    re.compile(r"lwp-trivial", re.IGNORECASE),
    re.compile(r"urllib", re.IGNORECASE),
    re.compile(r"python-requests", re.IGNORECASE),
    re.compile(r"node-fetch", re.IGNORECASE),
    re.compile(r"axios", re.IGNORECASE),
]

MOBILE_OS_TOKENS = ["android", "ios"]
MIN_USER_AGENT_LENGTH = 20
UNKNOWN = "Unknown"


def _known(value: Optional[str]) -> Optional[str]:
    """ua-parser reports unknown families as 'Other'"""
    if not value or value == "Other":
        return None
    return value


class DeviceDetector:
    """Parses a User-Agent into browser/OS/device type plus a bot flag"""

    def __init__(self, bot_keywords: List[str] = None):
        self.bot_keywords = [k.lower() for k in (bot_keywords or BOT_KEYWORDS)]

    def classify(self, user_agent: str) -> DeviceInfo:
        """
        Classify a User-Agent string. Never raises.

        deviceType order: bot -> parser's mobile/tablet -> mobile OS -> desktop.
        """
        user_agent = user_agent or ""
        is_bot = self.detect_bot(user_agent)

        try:
            parsed = parse_user_agent(user_agent)
        except Exception as e:
            logger.warning("User agent parsing failed", error=str(e))
            return DeviceInfo(
                device_type="bot" if is_bot else "desktop",
                is_bot=is_bot,
            )

        os_name = _known(parsed.os.family) or UNKNOWN
        return DeviceInfo(
            browser=_known(parsed.browser.family) or UNKNOWN,
            browser_version=parsed.browser.version_string or None,
            os=os_name,
            os_version=parsed.os.version_string or None,
            device_type=self._device_type(parsed, os_name, is_bot),
            device_vendor=_known(parsed.device.brand),
            device_model=_known(parsed.device.model),
            is_bot=is_bot,
        )

    def detect_bot(self, user_agent: str) -> bool:
        lowered = user_agent.lower()
        if any(keyword in lowered for keyword in self.bot_keywords):
            return True
        return self._has_bot_characteristics(user_agent)

    def _has_bot_characteristics(self, user_agent: str) -> bool:
        if len(user_agent) < MIN_USER_AGENT_LENGTH:
            return True

        if not any(marker in user_agent for marker in BROWSER_MARKERS):
            return True

        return any(pattern.search(user_agent) for pattern in SCRIPTED_CLIENT_PATTERNS)

    @staticmethod
    def _device_type(parsed, os_name: str, is_bot: bool) -> str:
        if is_bot:
            return "bot"
        if parsed.is_tablet:
            return "tablet"
        if parsed.is_mobile:
            return "mobile"
        lowered_os = os_name.lower()
        if any(token in lowered_os for token in MOBILE_OS_TOKENS):
            return "mobile"
        return "desktop"

    @staticmethod
    def extract_language(accept_language: str) -> Optional[str]:
        """First language tag of an Accept-Language header"""
        if not accept_language:
            return None
        for part in accept_language.split(","):
            tag = part.split(";")[0].strip()
            if tag:
                return tag[:10]
        return None
