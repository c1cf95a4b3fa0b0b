"""
Event & Profile Data Models

Shared data model for the behavioral-session core: behavior events, adaptations,
user profiles and the read models produced for dashboards and the DOM adapter.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from adaptive_form_engine.errors import EventValidationError


class EventType(str, Enum):
    """Kinds of interaction captured on a tracked form."""
    PAGE_LOAD = "page_load"
    MOUSE_MOVE = "mouse_move"
    MOUSE_CLICK = "mouse_click"
    KEY_PRESS = "key_press"
    FOCUS = "focus"
    BLUR = "blur"
    FIELD_CHANGE = "field_change"
    SCROLL = "scroll"
    FORM_SUBMIT = "form_submit"
    VISIBILITY_CHANGE = "visibility_change"


class AdaptationType(str, Enum):
    """Concrete UI changes the delivery layer knows how to apply."""
    FIELD_REORDER = "field_reorder"
    PROGRESSIVE_DISCLOSURE = "progressive_disclosure"
    CONTEXT_SWITCHING = "context_switching"
    ERROR_PREVENTION = "error_prevention"
    COMPLETION_GUIDANCE = "completion_guidance"


@dataclass(frozen=True)
class BehaviorEvent:
    """Immutable interaction fact produced by the capture layer."""
    session_id: str
    form_id: str
    event_type: EventType
    timestamp: float  # wall clock, milliseconds
    user_agent: str = ""
    url: str = ""
    field_name: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "form_id": self.form_id,
            "event_type": self.event_type.value,
            "field_name": self.field_name,
            "timestamp": self.timestamp,
            "data": dict(self.data),
            "user_agent": self.user_agent,
            "url": self.url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BehaviorEvent":
        return cls(
            session_id=data["session_id"],
            form_id=data["form_id"],
            event_type=EventType(data["event_type"]),
            timestamp=data["timestamp"],
            user_agent=data.get("user_agent", ""),
            url=data.get("url", ""),
            field_name=data.get("field_name"),
            data=data.get("data") or {},
        )


class BehaviorEventPayload(BaseModel):
    """Wire shape of an incoming event. Accepts camelCase or snake_case keys."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    session_id: str = Field(alias="sessionId", min_length=1)
    form_id: str = Field(alias="formId", min_length=1)
    event_type: EventType = Field(alias="eventType")
    timestamp: float = Field(gt=0)
    user_agent: str = Field(alias="userAgent", min_length=1)
    url: str = ""
    field_name: Optional[str] = Field(default=None, alias="fieldName")
    data: Dict[str, Any] = Field(default_factory=dict)


def parse_event(payload: Dict[str, Any]) -> BehaviorEvent:
    """
    Validate a raw event payload and build a BehaviorEvent.

    Args:
        payload: Raw event dictionary from the capture layer

    Returns:
        BehaviorEvent

    Raises:
        EventValidationError: if required fields are missing or malformed
    """
    if not isinstance(payload, dict):
        raise EventValidationError(
            "Event payload must be an object",
            {"received": type(payload).__name__},
        )

    try:
        parsed = BehaviorEventPayload.model_validate(payload)
    except PydanticValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise EventValidationError(
            f"Invalid behavior event: {', '.join(missing)}",
            {"errors": missing},
        ) from e

    return BehaviorEvent(
        session_id=parsed.session_id,
        form_id=parsed.form_id,
        event_type=parsed.event_type,
        timestamp=parsed.timestamp,
        user_agent=parsed.user_agent,
        url=parsed.url,
        field_name=parsed.field_name,
        data=parsed.data,
    )


@dataclass
class Adaptation:
    """Adaptation proposal or applied record. metadata["source"] is "ml" or "fallback"."""
    id: str
    session_id: str
    form_id: str
    adaptation_type: AdaptationType
    confidence: float
    parameters: Dict[str, Any] = field(default_factory=dict)
    config: Dict[str, Any] = field(default_factory=dict)
    applied_at: Optional[float] = None
    is_active: bool = True
    description: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def source(self) -> Optional[str]:
        return self.metadata.get("source")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["adaptation_type"] = self.adaptation_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Adaptation":
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            form_id=data["form_id"],
            adaptation_type=AdaptationType(data["adaptation_type"]),
            confidence=float(data.get("confidence", 0.0)),
            parameters=data.get("parameters") or {},
            config=data.get("config") or {},
            applied_at=data.get("applied_at"),
            is_active=data.get("is_active", True),
            description=data.get("description", ""),
            metadata=data.get("metadata") or {},
        )


@dataclass
class BehaviorCharacteristics:
    """Derived description of how a visitor fills the form."""
    average_field_focus_time: float = 0.0
    typing_speed: float = 0.0  # key presses per minute
    correction_frequency: float = 0.0
    device_type: str = "desktop"
    navigation_style: str = "linear"  # linear / jumping / searching
    completion_rate: float = 0.0


@dataclass
class UserProfile:
    """Per-session classification of the visitor."""
    session_id: str
    behavior_type: str
    confidence_score: float
    characteristics: BehaviorCharacteristics = field(default_factory=BehaviorCharacteristics)
    updated_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserProfile":
        return cls(
            session_id=data["session_id"],
            behavior_type=data.get("behavior_type", "desktop_user"),
            confidence_score=float(data.get("confidence_score", 0.0)),
            characteristics=BehaviorCharacteristics(**(data.get("characteristics") or {})),
            updated_at=data.get("updated_at"),
        )


@dataclass
class Recommendation:
    """Contextual adaptation recommendation for the DOM adapter."""
    type: AdaptationType
    priority: str  # "low", "medium", "high"
    confidence: float
    reasoning: str
    suggested_parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ContextualInsight:
    type: str
    description: str
    confidence: float
    actionable: bool = False


@dataclass
class BehavioralPattern:
    type: str
    description: str
    strength: float
    frequency: float


@dataclass
class EnhancedProfile:
    """Read model combining profile, metrics and analysis for dashboards."""
    session_id: str
    user_id: Optional[str]
    base_profile: Optional[UserProfile]
    session_metrics: Dict[str, Any]
    contextual_insights: List[ContextualInsight]
    behavioral_patterns: List[BehavioralPattern]
    risk_factors: List[str]
    opportunities: List[str]
    session_flags: Dict[str, bool]
