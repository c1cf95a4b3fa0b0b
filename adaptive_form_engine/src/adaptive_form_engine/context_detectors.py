"""
Context Detectors

Pure functions deriving device, browser, temporal and session context from an
EnvironmentProbe snapshot. The probe replaces ambient browser globals so the
core runs headless.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlparse

from adaptive_form_engine.session_state import (
    BrowserContext,
    DeviceContext,
    SessionContextData,
    TemporalContext,
)

MOBILE_PATTERN = re.compile(r"Mobile|Android|iPhone", re.IGNORECASE)
TABLET_PATTERN = re.compile(r"Tablet|iPad", re.IGNORECASE)

DAYS_OF_WEEK = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


@dataclass
class EnvironmentProbe:
    """Snapshot of the visitor's environment, taken once at session start."""
    user_agent: str = ""
    viewport_width: Optional[int] = None
    viewport_height: Optional[int] = None
    touch_supported: bool = False
    device_memory: Optional[float] = None
    hardware_concurrency: Optional[int] = None
    connection: Optional[Dict[str, Any]] = None  # effectiveType, downlink, rtt
    locale: str = "en-US"
    timezone: str = "UTC"
    referrer: str = ""
    landing_page: str = ""
    has_visited_before: bool = False
    browser_capabilities: Dict[str, bool] = field(default_factory=dict)
    now: Optional[datetime] = None  # local time at the visitor; defaults to datetime.now()


def parse_user_agent(user_agent: str) -> Dict[str, Any]:
    """Classify a user agent into device type and browser name."""
    user_agent = user_agent or ""
    is_mobile = bool(MOBILE_PATTERN.search(user_agent))
    is_tablet = bool(TABLET_PATTERN.search(user_agent))

    # Edge and Chrome both advertise "Chrome"; check the more specific token first
    if "Edg" in user_agent:
        browser = "edge"
    elif "Chrome" in user_agent or "CriOS" in user_agent:
        browser = "chrome"
    elif "Firefox" in user_agent or "FxiOS" in user_agent:
        browser = "firefox"
    elif "Safari" in user_agent:
        browser = "safari"
    else:
        browser = "unknown"

    if is_mobile:
        device_type = "mobile"
    elif is_tablet:
        device_type = "tablet"
    elif user_agent:
        device_type = "desktop"
    else:
        device_type = "unknown"

    return {
        "is_mobile": is_mobile,
        "is_tablet": is_tablet,
        "is_desktop": device_type == "desktop",
        "browser": browser,
        "device_type": device_type,
    }


def extract_browser_version(user_agent: str, browser_name: str) -> str:
    tokens = {
        "chrome": r"Chrome/(\d+\.\d+)",
        "firefox": r"Firefox/(\d+\.\d+)",
        "safari": r"Version/(\d+\.\d+)",
        "edge": r"Edg(?:e|A|iOS)?/(\d+\.\d+)",
    }
    pattern = tokens.get(browser_name)
    if not pattern:
        return "unknown"
    match = re.search(pattern, user_agent or "", re.IGNORECASE)
    return match.group(1) if match else "unknown"


def detect_device_context(probe: Optional[EnvironmentProbe]) -> DeviceContext:
    if probe is None or not probe.user_agent:
        return DeviceContext()

    parsed = parse_user_agent(probe.user_agent)
    capabilities = {
        "touch_supported": probe.touch_supported,
        "device_memory": probe.device_memory,
        "hardware_concurrency": probe.hardware_concurrency,
        "connection": probe.connection,
    }
    if probe.viewport_width is not None:
        capabilities["viewport"] = {"width": probe.viewport_width, "height": probe.viewport_height}

    return DeviceContext(
        type=parsed["device_type"],
        is_mobile=parsed["is_mobile"],
        is_tablet=parsed["is_tablet"],
        capabilities=capabilities,
    )


def detect_browser_context(probe: Optional[EnvironmentProbe]) -> BrowserContext:
    if probe is None or not probe.user_agent:
        return BrowserContext()

    name = parse_user_agent(probe.user_agent)["browser"]
    return BrowserContext(
        name=name,
        version=extract_browser_version(probe.user_agent, name),
        capabilities=dict(probe.browser_capabilities),
    )


def time_of_day(hour: int) -> str:
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 22:
        return "evening"
    return "late_night"


def detect_temporal_context(probe: Optional[EnvironmentProbe]) -> TemporalContext:
    now = (probe.now if probe and probe.now else None) or datetime.now()
    day = DAYS_OF_WEEK[now.weekday()]
    return TemporalContext(
        time_of_day=time_of_day(now.hour),
        day_of_week=day,
        is_weekend=day in ("saturday", "sunday"),
        hour=now.hour,
        timezone=probe.timezone if probe else "UTC",
    )


def extract_utm_parameters(url: str) -> Dict[str, str]:
    if not url:
        return {}
    query = urlparse(url).query
    return {k: v for k, v in parse_qsl(query) if k.startswith("utm_")}


def detect_session_context(probe: Optional[EnvironmentProbe]) -> SessionContextData:
    if probe is None:
        return SessionContextData()
    return SessionContextData(
        is_first_visit=not probe.has_visited_before,
        referrer=probe.referrer,
        landing_page=probe.landing_page,
        utm=extract_utm_parameters(probe.landing_page),
    )
