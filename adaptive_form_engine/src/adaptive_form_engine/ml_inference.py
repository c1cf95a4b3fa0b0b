"""
ML Inference Client & Adaptation Service

Asks the remote ML inference endpoint for adaptations and falls back to the
rule engine whenever the endpoint is unconfigured, slow, failing or returns
nothing usable. Inference failures never reach the caller.

Request:  {sessionId, events, userProfile, formContext}
Response: {success, adaptations: [...]} or {success, data: {adaptations: [...]}}
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence

import requests

from adaptive_form_engine.adaptation_rules import AdaptationRuleEngine
from adaptive_form_engine.behavior_metrics import build_user_profile, get_quick_insights
from adaptive_form_engine.errors import UpstreamInferenceError
from adaptive_form_engine.models import Adaptation, AdaptationType, BehaviorEvent, UserProfile
from adaptive_form_engine.session_manager import SessionManager

logger = logging.getLogger(__name__)


def _camel_event(event: BehaviorEvent) -> Dict[str, Any]:
    return {
        "sessionId": event.session_id,
        "formId": event.form_id,
        "eventType": event.event_type.value,
        "fieldName": event.field_name,
        "timestamp": event.timestamp,
        "data": dict(event.data),
        "userAgent": event.user_agent,
        "url": event.url,
    }


def _camel_profile(profile: UserProfile) -> Dict[str, Any]:
    c = profile.characteristics
    return {
        "sessionId": profile.session_id,
        "behaviorType": profile.behavior_type,
        "confidenceScore": profile.confidence_score,
        "characteristics": {
            "averageFieldFocusTime": c.average_field_focus_time,
            "typingSpeed": c.typing_speed,
            "correctionFrequency": c.correction_frequency,
            "deviceType": c.device_type,
            "navigationStyle": c.navigation_style,
            "completionRate": c.completion_rate,
        },
        "updatedAt": profile.updated_at,
    }


def parse_ml_adaptation(raw: Dict[str, Any], session_id: str, form_id: str) -> Adaptation:
    """Build an Adaptation from one ML response item (camelCase or snake_case).

    Raises:
        UpstreamInferenceError: If the item is not an object or its confidence is outside [0, 1]
    """
    if not isinstance(raw, dict):
        raise UpstreamInferenceError("ML inference returned a malformed adaptation", {"item": repr(raw)})

    adaptation_type = raw.get("adaptationType") or raw.get("adaptation_type") or raw.get("type")
    confidence = float(raw.get("confidence", 0.0))
    if not 0.0 <= confidence <= 1.0:
        raise UpstreamInferenceError("ML inference returned confidence out of range", {"confidence": confidence})

    metadata = dict(raw.get("metadata") or {})
    metadata["source"] = "ml"
    return Adaptation(
        id=str(raw.get("id") or uuid.uuid4()),
        session_id=raw.get("sessionId") or raw.get("session_id") or session_id,
        form_id=raw.get("formId") or raw.get("form_id") or form_id,
        adaptation_type=AdaptationType(adaptation_type),
        confidence=confidence,
        parameters=dict(raw.get("parameters") or {}),
        config=dict(raw.get("config") or {}),
        is_active=raw.get("isActive", raw.get("is_active", True)),
        description=raw.get("description") or raw.get("explanation") or "",
        metadata=metadata,
    )


class MLInferenceClient:
    """HTTP client for the ML inference endpoint."""

    def __init__(self, url: str, timeout: float = 5.0, http: Optional[requests.Session] = None):
        """
        Initialize MLInferenceClient.

        Args:
            url: Inference endpoint URL
            timeout: Seconds allowed for the whole call
            http: requests.Session to reuse connections (optional)
        """
        self.url = url
        self.timeout = timeout
        self.http = http or requests.Session()

    async def infer(
        self,
        session_id: str,
        form_id: str,
        events: Sequence[BehaviorEvent],
        profile: Optional[UserProfile],
        device_type: str,
        current_adaptations: Sequence[Adaptation] = (),
        session_start_time: Optional[float] = None,
    ) -> List[Adaptation]:
        """
        Request adaptations for a form.

        Returns:
            Non-empty list of adaptations tagged with source "ml"

        Raises:
            UpstreamInferenceError: on timeout, transport error, non-2xx,
                success false, malformed or empty adaptations
        """
        payload = {
            "sessionId": session_id,
            "events": [_camel_event(e) for e in events],
            "userProfile": _camel_profile(profile) if profile else None,
            "formContext": {
                "formId": form_id,
                "deviceType": device_type,
                "currentAdaptations": [a.to_dict() for a in current_adaptations],
                "sessionStartTime": session_start_time,
            },
        }

        try:
            body = await asyncio.wait_for(asyncio.to_thread(self._post, payload), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise UpstreamInferenceError("ML inference timed out", {"timeout": self.timeout}) from e

        if not body.get("success"):
            raise UpstreamInferenceError("ML inference reported failure", {"error": body.get("error")})

        raw_adaptations = body.get("adaptations")
        if raw_adaptations is None:
            data = body.get("data")
            if isinstance(data, dict):
                raw_adaptations = data.get("adaptations")
        if not raw_adaptations:
            raise UpstreamInferenceError("ML inference returned no adaptations")
        if not isinstance(raw_adaptations, list):
            raise UpstreamInferenceError("ML inference returned malformed adaptations",
                                         {"adaptations": type(raw_adaptations).__name__})

        try:
            return [parse_ml_adaptation(raw, session_id, form_id) for raw in raw_adaptations]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise UpstreamInferenceError("ML inference returned malformed adaptations", {"error": str(e)}) from e

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.http.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise UpstreamInferenceError("ML inference request failed", {"error": str(e)}) from e

        if not response.ok:
            raise UpstreamInferenceError(
                f"ML inference returned HTTP {response.status_code}",
                {"status": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamInferenceError("ML inference returned invalid JSON") from e
        if not isinstance(body, dict):
            raise UpstreamInferenceError("ML inference returned unexpected body")
        return body


class AdaptationService:
    """
    Produces adaptation proposals for a session's form.

    Flow:
    1. Build the per-session UserProfile and attach it to the session
    2. Ask the ML client (when configured)
    3. On any UpstreamInferenceError → AdaptationRuleEngine with quick insights
    """

    def __init__(
        self,
        ml_client: Optional[MLInferenceClient] = None,
        rule_engine: Optional[AdaptationRuleEngine] = None,
    ):
        self.ml_client = ml_client
        self.rule_engine = rule_engine or AdaptationRuleEngine()

    async def propose_adaptations(self, manager: SessionManager, form_id: str) -> List[Adaptation]:
        state = await manager.initialize()
        device_type = state.context.device.type
        form_events = state.events_for_form(form_id)

        profile = build_user_profile(state.session_id, state.events, device_type, manager.config)
        await manager.update_profile(profile)

        if self.ml_client is not None:
            try:
                adaptations = await self.ml_client.infer(
                    state.session_id,
                    form_id,
                    form_events,
                    profile,
                    device_type,
                    current_adaptations=[r.adaptation for r in state.adaptations],
                    session_start_time=state.start_time,
                )
                logger.info(f"🤖 [AdaptationService] ML proposed {len(adaptations)} adaptation(s) for {form_id}")
                return adaptations
            except UpstreamInferenceError as e:
                logger.info(f"🧭 [AdaptationService] ML unavailable for {form_id}, using fallback rules: {e}")

        insights = get_quick_insights(form_events)
        return self.rule_engine.generate(
            state.session_id,
            form_id,
            insights["user_type"],
            device_type,
            form_events,
        )
