"""
User-Agent parsing for device, browser and OS detection.

Every field is decided by an ordered table of (predicate, label) pairs that
is evaluated top to bottom; the first predicate that matches wins. Order
matters:
- Tablet signatures are checked before mobile ones, so an Android tablet or
  an iPad that also says "Mobile" is still a tablet.
- Chrome excludes Edge ("Edg") and Safari excludes Chrome, because Chromium
  browsers advertise all three tokens.
- Anything unmatched is "Unknown" rather than a guess.

Only the browser family, OS family and a three-way device class are kept.
No versions or device identifiers are stored.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable


class DeviceType(str, Enum):
    """Device category."""
    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"


@dataclass(frozen=True)
class DeviceInfo:
    """
    Parsed user-agent information.

    Attributes:
        device_type: mobile, tablet or desktop
        browser: Browser family name (Chrome, Firefox, Safari, ...)
        operating_system: OS family (Windows, macOS, Linux, Android, iOS)
    """
    device_type: DeviceType = DeviceType.DESKTOP
    browser: str = "Unknown"
    operating_system: str = "Unknown"

    def to_dict(self) -> dict:
        """Convert to row fields for storage."""
        return {
            "device_type": self.device_type.value,
            "browser": self.browser,
            "operating_system": self.operating_system,
        }


# =============================================================================
# DEVICE TYPE DETECTION
# =============================================================================

TABLET_PATTERN = re.compile(r"tablet|ipad|playbook|silk", re.IGNORECASE)

MOBILE_PATTERN = re.compile(
    r"mobile|iphone|ipod|android|blackberry|opera|mini|windows\sce|palm|smartphone|iemobile",
    re.IGNORECASE,
)

DEVICE_RULES: list[tuple[Callable[[str], bool], DeviceType]] = [
    (lambda ua: bool(TABLET_PATTERN.search(ua)), DeviceType.TABLET),
    (lambda ua: bool(MOBILE_PATTERN.search(ua)), DeviceType.MOBILE),
]

# =============================================================================
# BROWSER DETECTION
# =============================================================================
# Predicates receive the lower-cased user agent.

BROWSER_RULES: list[tuple[Callable[[str], bool], str]] = [
    (lambda ua: "firefox" in ua, "Firefox"),
    (lambda ua: "chrome" in ua and "edg" not in ua, "Chrome"),
    (lambda ua: "safari" in ua and "chrome" not in ua, "Safari"),
    (lambda ua: "edg" in ua, "Edge"),
    (lambda ua: "opera" in ua or "opr" in ua, "Opera"),
    (lambda ua: "trident" in ua or "msie" in ua, "Internet Explorer"),
]

# =============================================================================
# OS DETECTION
# =============================================================================

OS_RULES: list[tuple[Callable[[str], bool], str]] = [
    (lambda ua: "windows" in ua, "Windows"),
    (lambda ua: "mac" in ua, "macOS"),
    (lambda ua: "linux" in ua, "Linux"),
    (lambda ua: "android" in ua, "Android"),
    (lambda ua: "ios" in ua or "iphone" in ua or "ipad" in ua, "iOS"),
]


def _first_match(rules, ua: str, default):
    for predicate, label in rules:
        if predicate(ua):
            return label
    return default


def detect_device(user_agent: str | None) -> DeviceInfo:
    """
    Classify a user-agent string.

    Args:
        user_agent: The User-Agent header value (may be empty)

    Returns:
        DeviceInfo with device type, browser family and OS family

    Examples:
        >>> detect_device("Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) Mobile/15E148 Safari/604.1")
        DeviceInfo(device_type=<DeviceType.TABLET: 'tablet'>, browser='Safari', operating_system='macOS')
    """
    ua = user_agent or ""
    lowered = ua.lower()

    return DeviceInfo(
        device_type=_first_match(DEVICE_RULES, ua, DeviceType.DESKTOP),
        browser=_first_match(BROWSER_RULES, lowered, "Unknown"),
        operating_system=_first_match(OS_RULES, lowered, "Unknown"),
    )

