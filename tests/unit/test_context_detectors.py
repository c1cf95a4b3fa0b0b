"""
Unit Tests for Context Detectors

Tests user-agent parsing and device / browser / temporal / session context.
"""

import pytest
import sys
import os
from datetime import datetime

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "adaptive_form_engine", "src"))

from adaptive_form_engine.context_detectors import (
    EnvironmentProbe,
    detect_browser_context,
    detect_device_context,
    detect_session_context,
    detect_temporal_context,
    extract_utm_parameters,
    parse_user_agent,
    time_of_day,
)

CHROME_DESKTOP = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
EDGE_DESKTOP = CHROME_DESKTOP + " Edg/120.0.2210.91"
FIREFOX_DESKTOP = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


class TestParseUserAgent:
    """Test suite for parse_user_agent."""

    def test_chrome_desktop(self):
        parsed = parse_user_agent(CHROME_DESKTOP)
        assert parsed["browser"] == "chrome"
        assert parsed["device_type"] == "desktop"
        assert parsed["is_desktop"] is True

    def test_edge_checked_before_chrome(self):
        assert parse_user_agent(EDGE_DESKTOP)["browser"] == "edge"

    def test_firefox(self):
        assert parse_user_agent(FIREFOX_DESKTOP)["browser"] == "firefox"

    def test_iphone_safari(self):
        parsed = parse_user_agent(SAFARI_IPHONE)
        assert parsed["browser"] == "safari"
        assert parsed["is_mobile"] is True
        assert parsed["device_type"] == "mobile"

    def test_empty(self):
        parsed = parse_user_agent("")
        assert parsed["device_type"] == "unknown"
        assert parsed["browser"] == "unknown"


class TestContextDetection:
    """Test suite for the context detectors."""

    def test_device_without_probe(self):
        device = detect_device_context(None)
        assert device.type == "unknown"
        assert device.is_mobile is False

    def test_device_capabilities(self):
        probe = EnvironmentProbe(user_agent=SAFARI_IPHONE, viewport_width=390, viewport_height=844, touch_supported=True)
        device = detect_device_context(probe)

        assert device.is_mobile is True
        assert device.capabilities["touch_supported"] is True
        assert device.capabilities["viewport"] == {"width": 390, "height": 844}

    def test_browser_version(self):
        assert detect_browser_context(EnvironmentProbe(user_agent=CHROME_DESKTOP)).version == "120.0"
        assert detect_browser_context(EnvironmentProbe(user_agent=EDGE_DESKTOP)).version == "120.0"
        assert detect_browser_context(EnvironmentProbe(user_agent=SAFARI_IPHONE)).version == "17.0"

    @pytest.mark.parametrize("hour,expected", [
        (5, "late_night"),
        (6, "morning"),
        (12, "afternoon"),
        (18, "evening"),
        (22, "late_night"),
    ])
    def test_time_of_day(self, hour, expected):
        assert time_of_day(hour) == expected

    def test_temporal_context(self):
        # 2024-01-06 was a Saturday
        probe = EnvironmentProbe(timezone="Europe/Berlin", now=datetime(2024, 1, 6, 23, 15))
        temporal = detect_temporal_context(probe)

        assert temporal.time_of_day == "late_night"
        assert temporal.day_of_week == "saturday"
        assert temporal.is_weekend is True
        assert temporal.hour == 23
        assert temporal.timezone == "Europe/Berlin"

    def test_session_context(self):
        probe = EnvironmentProbe(
            referrer="https://search.example",
            landing_page="https://shop.example/signup?utm_source=news&utm_medium=email&ref=x",
            has_visited_before=True,
        )
        session = detect_session_context(probe)

        assert session.is_first_visit is False
        assert session.utm == {"utm_source": "news", "utm_medium": "email"}

    def test_utm_without_query(self):
        assert extract_utm_parameters("https://shop.example/signup") == {}
