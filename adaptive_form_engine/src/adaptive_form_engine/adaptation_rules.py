"""
Fallback Adaptation Rules

Rule-based adaptations used when the ML inference service is unavailable.
Maps a coarse user type (from quick insights) and the device type to a small
set of adaptations.
"""

import logging
import uuid
from typing import Any, Dict, List, Sequence

from adaptive_form_engine.models import Adaptation, AdaptationType, BehaviorEvent
from adaptive_form_engine.scoring_config import DEFAULT_SCORING_CONFIG, ScoringConfig

logger = logging.getLogger(__name__)


class AdaptationRuleEngine:
    """
    Deterministic fallback classifier.

    Rules:
    - fast → progressive_disclosure (0.6)
    - struggling → error_prevention (0.7)
    - careful → completion_guidance (0.5)
    - mobile device (any user type) → context_switching (0.8)
    """

    USER_TYPE_RULES: Dict[str, Dict[str, Any]] = {
        "fast": {
            "type": AdaptationType.PROGRESSIVE_DISCLOSURE,
            "confidence": 0.6,
            "parameters": {"initialFields": 3, "strategy": "efficiency"},
            "description": "Show fewer fields up front for a fast user",
        },
        "struggling": {
            "type": AdaptationType.ERROR_PREVENTION,
            "confidence": 0.7,
            "parameters": {"enableRealTimeValidation": True, "enableInlineHelp": True},
            "description": "Prevent errors for a struggling user",
        },
        "careful": {
            "type": AdaptationType.COMPLETION_GUIDANCE,
            "confidence": 0.5,
            "parameters": {"showProgress": True, "confirmationMessages": True},
            "description": "Guide a careful user through completion",
        },
    }

    MOBILE_RULE: Dict[str, Any] = {
        "type": AdaptationType.CONTEXT_SWITCHING,
        "confidence": 0.8,
        "parameters": {"mobileOptimized": True, "reducedFields": True},
        "description": "Optimize the form for a mobile device",
    }

    def __init__(self, config: ScoringConfig = DEFAULT_SCORING_CONFIG):
        self.min_form_events = config.min_events_for_fallback

    def generate(
        self,
        session_id: str,
        form_id: str,
        user_type: str,
        device_type: str,
        events: Sequence[BehaviorEvent],
    ) -> List[Adaptation]:
        """
        Generate fallback adaptations for a form.

        Args:
            session_id: Session identifier
            form_id: Form identifier
            user_type: "fast", "struggling", "careful" or anything else
            device_type: "mobile", "tablet", "desktop" or "unknown"
            events: Events observed on this form

        Returns:
            List of adaptations tagged with source "fallback" (possibly empty)
        """
        if len(events) < self.min_form_events:
            logger.debug(
                f"[AdaptationRuleEngine] Need at least {self.min_form_events} events for {form_id} (have {len(events)})"
            )
            return []

        rules = []
        if user_type in self.USER_TYPE_RULES:
            rules.append(self.USER_TYPE_RULES[user_type])
        if device_type == "mobile":
            rules.append(self.MOBILE_RULE)

        adaptations = [self._build(session_id, form_id, rule, user_type) for rule in rules]
        if adaptations:
            logger.info(
                f"🧭 [AdaptationRuleEngine] {len(adaptations)} fallback adaptation(s) for {form_id} "
                f"(user_type={user_type}, device={device_type})"
            )
        return adaptations

    def _build(self, session_id: str, form_id: str, rule: Dict[str, Any], user_type: str) -> Adaptation:
        return Adaptation(
            id=str(uuid.uuid4()),
            session_id=session_id,
            form_id=form_id,
            adaptation_type=rule["type"],
            confidence=rule["confidence"],
            parameters=dict(rule["parameters"]),
            description=rule["description"],
            metadata={"source": "fallback", "user_type": user_type},
        )
