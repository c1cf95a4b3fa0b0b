"""
Behavioral Metric Estimators

Event-derived estimators used by the adaptation service to classify a visitor
before asking the ML service (or the fallback rules) for adaptations:

- typing speed (key presses per minute)
- navigation style (linear / jumping / searching)
- classification confidence
- quick insights (user type + risk level)
- per-session user profile
"""

from typing import Any, Dict, List, Optional, Sequence

from adaptive_form_engine.models import (
    BehaviorCharacteristics,
    BehaviorEvent,
    EventType,
    UserProfile,
)
from adaptive_form_engine.scoring_config import DEFAULT_SCORING_CONFIG, ScoringConfig

CORRECTION_KEYS = ("Backspace", "Delete")


def _of_type(events: Sequence[BehaviorEvent], event_type: EventType) -> List[BehaviorEvent]:
    return [e for e in events if e.event_type == event_type]


def event_span_ms(events: Sequence[BehaviorEvent]) -> float:
    """Time between the first and last event, in milliseconds."""
    if len(events) < 2:
        return 0.0
    return max(events[-1].timestamp - events[0].timestamp, 0.0)


def calculate_typing_speed(events: Sequence[BehaviorEvent]) -> float:
    """
    Key presses per minute between the first and last key press.

    Returns 0 when fewer than 2 key events exist or they share a timestamp.
    """
    key_events = _of_type(events, EventType.KEY_PRESS)
    if len(key_events) < 2:
        return 0.0

    span_minutes = (key_events[-1].timestamp - key_events[0].timestamp) / 60000
    if span_minutes <= 0:
        return 0.0
    return len(key_events) / span_minutes


def calculate_error_rate(events: Sequence[BehaviorEvent]) -> float:
    """Share of key presses that were corrections (Backspace / Delete)."""
    key_events = _of_type(events, EventType.KEY_PRESS)
    if not key_events:
        return 0.0
    corrections = sum(1 for e in key_events if e.data.get("key") in CORRECTION_KEYS)
    return corrections / len(key_events)


def classify_navigation_style(
    events: Sequence[BehaviorEvent],
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> str:
    """
    Classify how the visitor moves between fields from focus events.

    Field identifiers are compared lexically as a stand-in for their position in
    the form. This approximates layout order only when field names sort the way
    the fields are laid out.
    """
    focus_events = _of_type(events, EventType.FOCUS)
    if len(focus_events) < config.min_focus_events:
        return "linear"

    searches = 0
    jumps = 0
    for previous, current in zip(focus_events, focus_events[1:]):
        prev_field = previous.field_name or ""
        cur_field = current.field_name or ""
        if cur_field < prev_field:
            searches += 1
        elif cur_field > prev_field:
            jumps += 1

    if searches > jumps:
        return "searching"
    if jumps > len(focus_events) * config.jump_ratio:
        return "jumping"
    return "linear"


def calculate_classification_confidence(
    event_count: int,
    session_duration_ms: float,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> float:
    """Confidence in a behavioral classification given how much signal exists."""
    volume = min(event_count / config.confidence_event_reference, 1.0)
    duration = min(max(session_duration_ms, 0.0) / config.confidence_duration_reference_ms, 1.0)
    return round(volume * config.confidence_event_weight + duration * config.confidence_duration_weight, 2)


def average_field_focus_time(events: Sequence[BehaviorEvent]) -> float:
    """Mean time from focusing a field to the next focus event."""
    focus_events = _of_type(events, EventType.FOCUS)
    if len(focus_events) < 2:
        return 0.0
    gaps = [b.timestamp - a.timestamp for a, b in zip(focus_events, focus_events[1:])]
    return sum(gaps) / len(gaps)


def get_quick_insights(events: Sequence[BehaviorEvent]) -> Dict[str, Any]:
    """
    Coarse visitor classification from raw events.

    Returns:
        Dict with user_type ("fast", "careful", "struggling", "new"),
        risk_level ("low", "medium", "high") and recommendations
    """
    if not events:
        return {
            "user_type": "new",
            "risk_level": "low",
            "recommendations": ["Monitor initial interactions"],
        }

    session_duration = event_span_ms(events)
    # No elapsed time means no rate signal: treat as zero rather than infinite
    events_per_second = len(events) / (session_duration / 1000) if session_duration > 0 else 0.0
    error_rate = calculate_error_rate(events)

    focus_events = _of_type(events, EventType.FOCUS)
    avg_focus_time = session_duration / len(focus_events) if len(focus_events) > 1 else 0.0

    user_type = "new"
    if events_per_second > 0.5 and error_rate < 0.1:
        user_type = "fast"
    elif avg_focus_time > 10000 and error_rate < 0.15:
        user_type = "careful"
    elif error_rate > 0.2 or avg_focus_time > 20000:
        user_type = "struggling"

    risk_level = "low"
    if error_rate > 0.3 or session_duration > 600000:
        risk_level = "high"
    elif error_rate > 0.15 or session_duration > 300000:
        risk_level = "medium"

    recommendations = {
        "fast": ["Minimize validation delays", "Enable keyboard shortcuts"],
        "careful": ["Provide confirmation feedback", "Add progress indicators"],
        "struggling": ["Add contextual help", "Enable error prevention"],
        "new": ["Provide guidance", "Monitor behavior patterns"],
    }[user_type]
    if risk_level == "high":
        recommendations = recommendations + ["Immediate intervention recommended"]

    return {
        "user_type": user_type,
        "risk_level": risk_level,
        "recommendations": recommendations,
        "error_rate": error_rate,
        "events_per_second": events_per_second,
    }


def classify_behavior_type(events: Sequence[BehaviorEvent], device_type: str) -> str:
    mouse_events = len(_of_type(events, EventType.MOUSE_MOVE))
    key_events = len(_of_type(events, EventType.KEY_PRESS))
    focus_events = len(_of_type(events, EventType.FOCUS))

    if mouse_events > key_events * 2:
        return "methodical_user"
    if key_events > mouse_events and focus_events < 5:
        return "fast_user"
    if device_type == "mobile":
        return "mobile_user"
    return "desktop_user"


def build_user_profile(
    session_id: str,
    events: Sequence[BehaviorEvent],
    device_type: str = "desktop",
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
    updated_at: Optional[float] = None,
) -> UserProfile:
    """Build the per-session UserProfile sent to the ML service."""
    submits = _of_type(events, EventType.FORM_SUBMIT)
    completed = any(e.data.get("success", True) for e in submits)

    characteristics = BehaviorCharacteristics(
        average_field_focus_time=average_field_focus_time(events),
        typing_speed=calculate_typing_speed(events),
        correction_frequency=calculate_error_rate(events),
        device_type=device_type,
        navigation_style=classify_navigation_style(events, config),
        completion_rate=1.0 if completed else 0.0,
    )

    return UserProfile(
        session_id=session_id,
        behavior_type=classify_behavior_type(events, device_type),
        confidence_score=calculate_classification_confidence(len(events), event_span_ms(events), config),
        characteristics=characteristics,
        updated_at=updated_at if updated_at is not None else (events[-1].timestamp if events else None),
    )
