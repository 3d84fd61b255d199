"""Tests for device, browser and OS detection."""

import pytest

from rental_analytics.user_agent import DeviceType, detect_device

CHROME_WINDOWS = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
EDGE_WINDOWS = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0"
FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
SAFARI_MAC = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15"
IPHONE = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
IPAD = "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
ANDROID_PHONE = "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
ANDROID_TABLET = "Mozilla/5.0 (Linux; Android 13; SM-X700) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Tablet"
IE11 = "Mozilla/5.0 (Windows NT 10.0; WOW64; Trident/7.0; rv:11.0) like Gecko"


class TestDeviceType:
    """Tablet signatures are checked before mobile ones."""

    @pytest.mark.parametrize("ua,expected", [
        (CHROME_WINDOWS, DeviceType.DESKTOP),
        (SAFARI_MAC, DeviceType.DESKTOP),
        (FIREFOX_LINUX, DeviceType.DESKTOP),
        (IPHONE, DeviceType.MOBILE),
        (ANDROID_PHONE, DeviceType.MOBILE),
        (IPAD, DeviceType.TABLET),
        (ANDROID_TABLET, DeviceType.TABLET),
        ("Mozilla/5.0 (Linux; U; Android 4.0.3; en-us; KFTT Build/IML74K) Silk/3.68", DeviceType.TABLET),
    ])
    def test_device_type(self, ua, expected):
        """Device class follows the user agent."""
        assert detect_device(ua).device_type == expected

    def test_tablet_wins_over_mobile_token(self):
        """iPad is a tablet despite its Mobile token."""
        # iPad UA also carries "Mobile/15E148"
        assert "Mobile" in IPAD
        assert detect_device(IPAD).device_type == DeviceType.TABLET

    def test_opera_counts_as_mobile(self):
        """Opera Mini is mobile."""
        ua = "Opera/9.80 (J2ME/MIDP; Opera Mini/9.80) Presto/2.5.25 Version/10.54"
        assert detect_device(ua).device_type == DeviceType.MOBILE


class TestBrowser:
    """First matching browser rule wins."""

    @pytest.mark.parametrize("ua,expected", [
        (CHROME_WINDOWS, "Chrome"),
        (EDGE_WINDOWS, "Edge"),
        (FIREFOX_LINUX, "Firefox"),
        (SAFARI_MAC, "Safari"),
        (IPHONE, "Safari"),
        (ANDROID_PHONE, "Chrome"),
        (IE11, "Internet Explorer"),
        ("Opera/9.80 (Windows NT 6.1) Presto/2.12.388 Version/12.16", "Opera"),
    ])
    def test_browser(self, ua, expected):
        """Browser names follow the user agent."""
        assert detect_device(ua).browser == expected

    def test_chrome_excludes_edge(self):
        """Edge is not reported as Chrome."""
        assert detect_device(EDGE_WINDOWS).browser != "Chrome"

    def test_safari_excludes_chrome(self):
        """Chrome is not reported as Safari."""
        assert detect_device(CHROME_WINDOWS).browser != "Safari"

    def test_case_insensitive(self):
        """Matching ignores case."""
        assert detect_device("FIREFOX/100").browser == "Firefox"


class TestOperatingSystem:
    """OS rules are ordered substring checks."""

    @pytest.mark.parametrize("ua,expected", [
        (CHROME_WINDOWS, "Windows"),
        (SAFARI_MAC, "macOS"),
        (FIREFOX_LINUX, "Linux"),
        # "like Mac OS X" matches before the iOS tokens
        (IPHONE, "macOS"),
        (IPAD, "macOS"),
        # "Linux" precedes "Android" in Android user agents
        (ANDROID_PHONE, "Linux"),
        ("Dalvik/2.1.0 (Android 14)", "Android"),
        ("SomeApp/1.0 (iPhone14,2)", "iOS"),
    ])
    def test_operating_system(self, ua, expected):
        """OS names follow the rule order."""
        assert detect_device(ua).operating_system == expected


class TestUnknownAgents:
    """Unmatched or missing user agents."""

    @pytest.mark.parametrize("ua", [None, "", "curl/8.4.0"])
    def test_unknown(self, ua):
        """Unknown agents are desktop with unknown browser and OS."""
        info = detect_device(ua)
        assert info.device_type == DeviceType.DESKTOP
        assert info.browser == "Unknown"
        assert info.operating_system == "Unknown"

    def test_to_dict(self):
        """to_dict uses the row column names."""
        assert detect_device(IPHONE).to_dict() == {
            "device_type": "mobile",
            "browser": "Safari",
            "operating_system": "macOS",
        }

    def test_deterministic(self):
        """The same agent always gives the same result."""
        assert detect_device(ANDROID_PHONE) == detect_device(ANDROID_PHONE)
