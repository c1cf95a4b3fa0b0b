"""
Session State Data Model

Defines the SessionState aggregate and the context, metrics and flag bundles
it owns. One SessionState exists per session id.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from adaptive_form_engine.models import Adaptation, BehaviorEvent, UserProfile


@dataclass
class DeviceContext:
    type: str = "unknown"  # mobile / tablet / desktop / unknown
    is_mobile: bool = False
    is_tablet: bool = False
    capabilities: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BrowserContext:
    name: str = "unknown"
    version: str = "unknown"
    capabilities: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TemporalContext:
    time_of_day: str = "morning"  # morning / afternoon / evening / late_night
    day_of_week: str = "monday"
    is_weekend: bool = False
    hour: int = 0
    timezone: str = "UTC"


@dataclass
class BehavioralContext:
    """Rolling estimate of how the visitor types, hesitates and navigates."""
    typing_speed: float = 0.5
    error_rate: float = 0.1
    confidence_level: float = 0.5
    average_hesitation: float = 2000.0  # milliseconds
    precision: float = 0.5
    help_seeking: float = 0.3
    recent_engagement: float = 0.5
    scroll_frequency: float = 0.3
    typing_confidence: float = 0.5


@dataclass
class SessionContextData:
    is_first_visit: bool = True
    referrer: str = ""
    landing_page: str = ""
    utm: Dict[str, str] = field(default_factory=dict)


@dataclass
class SessionContext:
    device: DeviceContext = field(default_factory=DeviceContext)
    browser: BrowserContext = field(default_factory=BrowserContext)
    temporal: TemporalContext = field(default_factory=TemporalContext)
    behavioral: BehavioralContext = field(default_factory=BehavioralContext)
    session: SessionContextData = field(default_factory=SessionContextData)


@dataclass
class SessionMetrics:
    total_events: int = 0
    total_adaptations: int = 0
    session_duration: float = 0.0  # milliseconds
    engagement_score: float = 0.0
    conversion_likelihood: float = 0.5


@dataclass
class SessionFlags:
    """Derived booleans. Only the session manager sets these."""
    is_returning_user: bool = False
    is_high_value_session: bool = False
    needs_assistance: bool = False
    risk_of_abandonment: bool = False


@dataclass
class AdaptationRecord:
    """Applied adaptation plus a snapshot of the session when it landed."""
    adaptation: Adaptation
    session_context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SessionState:
    """Mutable aggregate root for one visitor's interaction with a form."""
    session_id: str
    user_id: Optional[str] = None
    start_time: float = 0.0
    last_activity: float = 0.0
    events: List[BehaviorEvent] = field(default_factory=list)
    adaptations: List[AdaptationRecord] = field(default_factory=list)
    user_profile: Optional[UserProfile] = None
    context: SessionContext = field(default_factory=SessionContext)
    metrics: SessionMetrics = field(default_factory=SessionMetrics)
    flags: SessionFlags = field(default_factory=SessionFlags)

    def events_of_type(self, event_type) -> List[BehaviorEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def events_for_form(self, form_id: str) -> List[BehaviorEvent]:
        return [e for e in self.events if e.form_id == form_id]
