"""
Context Analyzer

Translates raw behavior events into the rolling BehavioralContext and produces
recommendations, insights and patterns from an accumulated SessionState.

The analyzer holds no session data of its own; every method operates on the
SessionState passed in.
"""

import logging
from typing import List, Optional

from adaptive_form_engine.behavior_metrics import (
    calculate_error_rate,
    calculate_typing_speed,
)
from adaptive_form_engine.models import (
    Adaptation,
    AdaptationType,
    BehavioralPattern,
    BehaviorEvent,
    ContextualInsight,
    EventType,
    Recommendation,
)
from adaptive_form_engine.scoring_config import DEFAULT_SCORING_CONFIG, ScoringConfig
from adaptive_form_engine.session_state import BehavioralContext, SessionState

logger = logging.getLogger(__name__)

ENGAGEMENT_EVENTS = (EventType.MOUSE_MOVE, EventType.SCROLL)
INPUT_EVENTS = (EventType.KEY_PRESS, EventType.FIELD_CHANGE)


class ContextAnalyzer:
    """
    Behavioral pattern recognition over a session.

    Update rules per event type:
    - mouse_move / scroll → recent engagement +0.1 (capped at 1, never decays)
    - key_press → typing speed, error rate, typing confidence
    - focus / key_press / field_change → average hesitation
    - mouse_click → precision, help seeking
    - scroll → scroll frequency
    """

    def __init__(self, config: ScoringConfig = DEFAULT_SCORING_CONFIG):
        self.config = config

    def analyze_event(self, event: BehaviorEvent, state: SessionState) -> None:
        """Update the session's behavioral context with a newly ingested event."""
        context = state.context.behavioral
        cfg = self.config

        if event.event_type in ENGAGEMENT_EVENTS:
            context.recent_engagement = min(context.recent_engagement + cfg.engagement_increment, 1.0)

        if event.event_type == EventType.KEY_PRESS:
            self._update_typing_metrics(state, context)

        if event.event_type in (EventType.FOCUS,) + INPUT_EVENTS:
            hesitation = self._average_hesitation(state.events)
            if hesitation is not None:
                context.average_hesitation = hesitation
                self._update_confidence_level(context)

        if event.event_type == EventType.MOUSE_CLICK:
            self._update_pointer_metrics(event, state, context)

        if event.event_type == EventType.SCROLL and state.events:
            scrolls = len(state.events_of_type(EventType.SCROLL))
            context.scroll_frequency = scrolls / len(state.events)

    def analyze_adaptation_impact(self, adaptation: Adaptation, state: SessionState) -> None:
        """Hook for feeding adaptation effectiveness back to the ML pipeline."""
        # No feedback loop yet; the applied record and its snapshot are persisted by the caller
        return None

    def generate_recommendations(self, state: SessionState) -> List[Recommendation]:
        """
        Build recommendations in fixed rule order.

        1. needs assistance → error_prevention (high, 0.8)
        2. mobile with low precision → context_switching (medium, 0.7)
        """
        recommendations: List[Recommendation] = []
        behavioral = state.context.behavioral

        if state.flags.needs_assistance:
            recommendations.append(Recommendation(
                type=AdaptationType.ERROR_PREVENTION,
                priority="high",
                confidence=0.8,
                reasoning="User showing signs of difficulty",
                suggested_parameters={
                    "enableRealTimeValidation": True,
                    "enableInlineHelp": True,
                    "showHelpText": True,
                },
            ))

        if state.context.device.is_mobile and behavioral.precision < self.config.low_precision:
            recommendations.append(Recommendation(
                type=AdaptationType.CONTEXT_SWITCHING,
                priority="medium",
                confidence=0.7,
                reasoning="Mobile user with precision issues",
                suggested_parameters={
                    "mobileOptimized": True,
                    "largerTouchTargets": True,
                    "reducedFields": True,
                },
            ))

        return recommendations

    def get_contextual_insights(self, state: SessionState) -> List[ContextualInsight]:
        insights: List[ContextualInsight] = []

        if state.context.behavioral.typing_speed > self.config.fast_typing_speed:
            insights.append(ContextualInsight(
                type="user_capability",
                description="Fast typist - optimize for efficiency",
                confidence=0.9,
                actionable=True,
            ))

        if state.flags.is_returning_user:
            insights.append(ContextualInsight(
                type="user_loyalty",
                description="Returning user with established patterns",
                confidence=0.8,
                actionable=True,
            ))

        return insights

    def get_behavioral_patterns(self, state: SessionState) -> List[BehavioralPattern]:
        patterns: List[BehavioralPattern] = []

        key_events = state.events_of_type(EventType.KEY_PRESS)
        if len(key_events) >= self.config.min_key_events_for_pattern:
            patterns.append(BehavioralPattern(
                type="typing",
                description=self.analyze_typing_pattern(key_events),
                strength=0.7,
                frequency=len(key_events) / len(state.events),
            ))

        return patterns

    def analyze_typing_pattern(self, key_events: List[BehaviorEvent]) -> str:
        intervals = [b.timestamp - a.timestamp for a, b in zip(key_events, key_events[1:])]
        if not intervals:
            return "Slow typist"
        avg_interval = sum(intervals) / len(intervals)

        if avg_interval < self.config.very_fast_interval_ms:
            return "Very fast typist"
        if avg_interval < self.config.fast_interval_ms:
            return "Fast typist"
        if avg_interval < self.config.moderate_interval_ms:
            return "Moderate typist"
        return "Slow typist"

    def _update_typing_metrics(self, state: SessionState, context: BehavioralContext) -> None:
        cfg = self.config
        key_events = state.events_of_type(EventType.KEY_PRESS)

        keys_per_minute = calculate_typing_speed(key_events)
        if keys_per_minute > 0:
            context.typing_speed = min(keys_per_minute / cfg.typing_speed_reference, 1.0)

        if len(key_events) >= cfg.min_key_events_for_error_rate:
            context.error_rate = calculate_error_rate(key_events)
            context.typing_confidence = max(0.0, 1.0 - context.error_rate)
            self._update_confidence_level(context)

    def _update_pointer_metrics(self, event: BehaviorEvent, state: SessionState, context: BehavioralContext) -> None:
        clicks = state.events_of_type(EventType.MOUSE_CLICK)
        reported = [c for c in clicks if "onTarget" in c.data]
        if reported:
            hits = sum(1 for c in reported if c.data.get("onTarget"))
            context.precision = hits / len(reported)

        target = str(event.data.get("target", "")).lower()
        if event.data.get("helpRequested") or "help" in target:
            context.help_seeking = min(context.help_seeking + self.config.help_seeking_increment, 1.0)

    def _update_confidence_level(self, context: BehavioralContext) -> None:
        hesitation_factor = 1.0 - min(context.average_hesitation / self.config.hesitation_reference_ms, 1.0)
        context.confidence_level = (context.typing_confidence + hesitation_factor) / 2

    def _average_hesitation(self, events: List[BehaviorEvent]) -> Optional[float]:
        """Mean delay between focusing a field and the first input that follows."""
        delays = []
        pending_focus: Optional[BehaviorEvent] = None
        for event in events:
            if event.event_type == EventType.FOCUS:
                pending_focus = event
            elif event.event_type in INPUT_EVENTS and pending_focus is not None:
                delays.append(max(event.timestamp - pending_focus.timestamp, 0.0))
                pending_focus = None

        if not delays:
            return None
        return sum(delays) / len(delays)
