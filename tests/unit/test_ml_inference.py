"""
Unit Tests for ML Inference Client and Adaptation Service

Tests response handling and the fallback to rule-based adaptations.
"""

import time
import pytest
import requests
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "adaptive_form_engine", "src"))

from adaptive_form_engine.context_detectors import EnvironmentProbe
from adaptive_form_engine.errors import UpstreamInferenceError
from adaptive_form_engine.ml_inference import AdaptationService, MLInferenceClient, parse_ml_adaptation
from adaptive_form_engine.models import AdaptationType, BehaviorEvent, EventType
from adaptive_form_engine.persistence import InMemoryPersistenceStore
from adaptive_form_engine.session_manager import SessionManager

DESKTOP_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0.0.0 Safari/537.36"

ML_ADAPTATION = {
    "id": "ml_1",
    "type": "field_reorder",
    "confidence": 0.82,
    "parameters": {"order": ["email", "name"]},
    "explanation": "Users like this fill email first",
}


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no JSON body")
        return self._body


class FakeHttp:
    """Stand-in for requests.Session recording posted payloads."""

    def __init__(self, response=None, error=None, delay=0.0):
        self.response = response
        self.error = error
        self.delay = delay
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.response


def make_client(response=None, error=None, delay=0.0, timeout=1.0):
    http = FakeHttp(response=response, error=error, delay=delay)
    return MLInferenceClient("https://ml.example/api/ml-inference", timeout=timeout, http=http), http


async def struggling_manager():
    manager = SessionManager("session_1", InMemoryPersistenceStore(), environment=EnvironmentProbe(user_agent=DESKTOP_UA))
    for i, key in enumerate(["a", "Backspace", "b", "Backspace"]):
        await manager.ingest(BehaviorEvent(
            session_id="session_1",
            form_id="signup",
            event_type=EventType.KEY_PRESS,
            timestamp=1000 + i * 1000,
            user_agent=DESKTOP_UA,
            field_name="email",
            data={"key": key},
        ))
    return manager


class TestMLInferenceClient:
    """Test suite for MLInferenceClient."""

    @pytest.mark.asyncio
    async def test_adaptations_at_top_level(self):
        client, http = make_client(FakeResponse(body={"success": True, "adaptations": [ML_ADAPTATION]}))

        adaptations = await client.infer("session_1", "signup", [], None, "desktop")

        assert len(adaptations) == 1
        assert adaptations[0].adaptation_type == AdaptationType.FIELD_REORDER
        assert adaptations[0].source == "ml"
        assert adaptations[0].form_id == "signup"
        assert adaptations[0].description == "Users like this fill email first"
        assert http.calls[0]["json"]["formContext"]["formId"] == "signup"

    @pytest.mark.asyncio
    async def test_adaptations_nested_in_data(self):
        client, _ = make_client(FakeResponse(body={"success": True, "data": {"adaptations": [ML_ADAPTATION]}}))

        adaptations = await client.infer("session_1", "signup", [], None, "desktop")

        assert adaptations[0].id == "ml_1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        FakeResponse(status_code=503, body={"success": False}),
        FakeResponse(body={"success": False, "error": "model not loaded"}),
        FakeResponse(body={"success": True, "adaptations": []}),
        FakeResponse(body={"success": True, "adaptations": [{"type": "teleport", "confidence": 1}]}),
        FakeResponse(body=None),
        FakeResponse(body={"success": True, "adaptations": ["progressive_disclosure"]}),
        FakeResponse(body={"success": True, "adaptations": {"type": "field_reorder"}}),
        FakeResponse(body={"success": True, "data": "oops"}),
        FakeResponse(body={"success": True, "data": {"adaptations": [None]}}),
        FakeResponse(body={"success": True, "adaptations": [dict(ML_ADAPTATION, confidence=1.5)]}),
        FakeResponse(body={"success": True, "adaptations": [dict(ML_ADAPTATION, confidence=-0.1)]}),
    ])
    async def test_unusable_responses_raise(self, response):
        client, _ = make_client(response)

        with pytest.raises(UpstreamInferenceError):
            await client.infer("session_1", "signup", [], None, "desktop")

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        client, _ = make_client(error=requests.ConnectionError("refused"))

        with pytest.raises(UpstreamInferenceError):
            await client.infer("session_1", "signup", [], None, "desktop")

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        client, _ = make_client(FakeResponse(body={"success": True, "adaptations": [ML_ADAPTATION]}), delay=0.3, timeout=0.05)

        with pytest.raises(UpstreamInferenceError) as exc_info:
            await client.infer("session_1", "signup", [], None, "desktop")
        assert exc_info.value.code == "ML_ERROR"

    def test_parse_snake_case_item(self):
        adaptation = parse_ml_adaptation(
            {"adaptation_type": "error_prevention", "confidence": 0.5, "form_id": "other"},
            "session_1",
            "signup",
        )
        assert adaptation.adaptation_type == AdaptationType.ERROR_PREVENTION
        assert adaptation.form_id == "other"
        assert adaptation.metadata == {"source": "ml"}

    @pytest.mark.parametrize("raw", ["progressive_disclosure", None, ["field_reorder"]])
    def test_parse_rejects_non_object_item(self, raw):
        with pytest.raises(UpstreamInferenceError):
            parse_ml_adaptation(raw, "session_1", "signup")

    @pytest.mark.parametrize("confidence", [0, 1])
    def test_parse_accepts_confidence_bounds(self, confidence):
        adaptation = parse_ml_adaptation(dict(ML_ADAPTATION, confidence=confidence), "session_1", "signup")
        assert adaptation.confidence == confidence


class TestAdaptationService:
    """Test suite for AdaptationService."""

    @pytest.mark.asyncio
    async def test_uses_ml_when_available(self):
        client, http = make_client(FakeResponse(body={"success": True, "adaptations": [ML_ADAPTATION]}))
        service = AdaptationService(ml_client=client)
        manager = await struggling_manager()

        adaptations = await service.propose_adaptations(manager, "signup")

        assert [a.source for a in adaptations] == ["ml"]
        payload = http.calls[0]["json"]
        assert payload["sessionId"] == "session_1"
        assert len(payload["events"]) == 4
        assert payload["userProfile"]["sessionId"] == "session_1"

    @pytest.mark.asyncio
    async def test_falls_back_when_ml_fails(self):
        client, _ = make_client(FakeResponse(status_code=500))
        service = AdaptationService(ml_client=client)
        manager = await struggling_manager()

        adaptations = await service.propose_adaptations(manager, "signup")

        assert len(adaptations) == 1
        assert adaptations[0].adaptation_type == AdaptationType.ERROR_PREVENTION
        assert adaptations[0].source == "fallback"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"success": True, "adaptations": ["progressive_disclosure"]},
        {"success": True, "data": "oops"},
        {"success": True, "adaptations": [dict(ML_ADAPTATION, confidence=7)]},
    ])
    async def test_falls_back_on_malformed_items(self, body):
        client, _ = make_client(FakeResponse(body=body))
        service = AdaptationService(ml_client=client)
        manager = await struggling_manager()

        adaptations = await service.propose_adaptations(manager, "signup")

        assert [a.adaptation_type for a in adaptations] == [AdaptationType.ERROR_PREVENTION]
        assert adaptations[0].source == "fallback"

    @pytest.mark.asyncio
    async def test_without_client_uses_rules(self):
        manager = await struggling_manager()

        adaptations = await AdaptationService().propose_adaptations(manager, "signup")

        assert [a.source for a in adaptations] == ["fallback"]

    @pytest.mark.asyncio
    async def test_attaches_user_profile(self):
        manager = await struggling_manager()

        await AdaptationService().propose_adaptations(manager, "signup")

        profile = manager.state.user_profile
        assert profile is not None
        assert profile.characteristics.device_type == "desktop"
        assert profile.characteristics.correction_frequency == pytest.approx(0.5)
        assert manager.get_enhanced_profile().base_profile is profile
