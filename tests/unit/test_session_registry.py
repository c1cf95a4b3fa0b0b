"""
Unit Tests for Session Registry

Tests batch validation, manager reuse and adaptation proposals.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "adaptive_form_engine", "src"))

from adaptive_form_engine.ml_inference import AdaptationService, MLInferenceClient
from adaptive_form_engine.models import AdaptationType
from adaptive_form_engine.persistence import InMemoryPersistenceStore, SupabasePersistenceStore
from adaptive_form_engine.session_registry import SessionRegistry
from adaptive_form_engine.settings import Settings

MOBILE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


class MalformedMLHttp:
    """Stand-in for requests.Session answering with adaptation names instead of objects."""

    def post(self, url, json=None, timeout=None):
        return MalformedMLResponse()


class MalformedMLResponse:
    status_code = 200
    ok = True

    def json(self):
        return {"success": True, "adaptations": ["progressive_disclosure"]}


def payload(event_type, timestamp, session_id="session_1", **data):
    return {
        "sessionId": session_id,
        "formId": "signup",
        "eventType": event_type,
        "fieldName": "email",
        "timestamp": timestamp,
        "userAgent": MOBILE_UA,
        "url": "https://shop.example/signup",
        "data": data,
    }


class TestSessionRegistry:
    """Test suite for SessionRegistry."""

    @pytest.fixture
    def registry(self):
        return SessionRegistry(store=InMemoryPersistenceStore(), clock=lambda: 1000.0)

    @pytest.mark.asyncio
    async def test_batch_rejects_only_malformed_events(self, registry):
        bad_agent = payload("focus", 1500)
        del bad_agent["userAgent"]

        result = await registry.ingest_batch([
            payload("page_load", 1000),
            bad_agent,
            payload("telepathy", 1600),
            "not an event",
            payload("focus", 2000),
        ])

        assert result.accepted == 2
        assert result.rejected == 3
        assert [e["index"] for e in result.errors] == [1, 2, 3]
        assert all(e["code"] == "INVALID_EVENT" for e in result.errors)
        assert registry.get_manager("session_1").state.metrics.total_events == 2

    @pytest.mark.asyncio
    async def test_one_manager_per_session(self, registry):
        await registry.ingest_batch([
            payload("page_load", 1000, session_id="a"),
            payload("page_load", 1000, session_id="b"),
            payload("focus", 1200, session_id="a"),
        ])

        assert sorted(registry.active_sessions()) == ["a", "b"]
        assert registry.get_manager("a") is registry.get_manager("a")
        assert registry.get_manager("a").state.metrics.total_events == 2
        assert registry.get_manager("b").state.metrics.total_events == 1

    @pytest.mark.asyncio
    async def test_device_detected_from_event_user_agent(self, registry):
        await registry.ingest_batch([payload("page_load", 1000)])

        device = registry.get_manager("session_1").state.context.device
        assert device.type == "mobile"

    @pytest.mark.asyncio
    async def test_fallback_proposals_for_struggling_mobile_user(self, registry):
        keys = ["a", "Backspace", "b", "Backspace"]
        await registry.ingest_batch([payload("key_press", 1000 + i * 1000, key=k) for i, k in enumerate(keys)])

        adaptations = await registry.propose_adaptations("session_1", "signup")

        assert [a.adaptation_type for a in adaptations] == [
            AdaptationType.ERROR_PREVENTION,
            AdaptationType.CONTEXT_SWITCHING,
        ]
        assert all(a.source == "fallback" for a in adaptations)

    @pytest.mark.asyncio
    async def test_device_detected_after_initialize_without_environment(self, registry):
        await registry.initialize("session_2", "user_1")
        keys = ["a", "Backspace", "b", "Backspace"]
        await registry.ingest_batch([
            payload("key_press", 1000 + i * 1000, session_id="session_2", key=k) for i, k in enumerate(keys)
        ])

        state = registry.get_manager("session_2").state
        assert state.user_id == "user_1"
        assert state.context.device.type == "mobile"
        assert state.context.device.is_mobile is True
        assert state.context.browser.name == "safari"

        adaptations = await registry.propose_adaptations("session_2", "signup")
        assert [a.adaptation_type for a in adaptations] == [
            AdaptationType.ERROR_PREVENTION,
            AdaptationType.CONTEXT_SWITCHING,
        ]

    @pytest.mark.asyncio
    async def test_malformed_ml_items_fall_back_to_rules(self):
        ml_client = MLInferenceClient("https://ml.example/api/ml-inference", http=MalformedMLHttp())
        registry = SessionRegistry(
            store=InMemoryPersistenceStore(),
            adaptation_service=AdaptationService(ml_client=ml_client),
            clock=lambda: 1000.0,
        )
        keys = ["a", "Backspace", "b", "Backspace"]
        await registry.ingest_batch([payload("key_press", 1000 + i * 1000, key=k) for i, k in enumerate(keys)])

        adaptations = await registry.propose_adaptations("session_1", "signup")

        assert adaptations
        assert all(a.source == "fallback" for a in adaptations)

    @pytest.mark.asyncio
    async def test_recommendations_for_unknown_session(self, registry):
        assert registry.get_recommendations("missing") == []

    @pytest.mark.asyncio
    async def test_shared_history_marks_returning_user(self, registry):
        await registry.initialize("visit_1", "user_1")
        await registry.ingest_batch([payload("page_load", 1000, session_id="visit_1")])

        state = await registry.initialize("visit_2", "user_1")

        assert state.flags.is_returning_user is True

    def test_from_settings_without_supabase(self):
        registry = SessionRegistry.from_settings(Settings())

        assert isinstance(registry.store, InMemoryPersistenceStore)
        assert registry.adaptation_service.ml_client is None

    def test_from_settings_with_supabase_and_ml(self, monkeypatch):
        import adaptive_form_engine.supabase_client as supabase_client

        monkeypatch.setattr(supabase_client, "get_supabase_client", lambda settings=None: object())
        settings = Settings(
            supabase_url="https://project.supabase.co",
            supabase_service_key="service-key",
            store_table="kv",
            ml_inference_url="https://ml.example/api/ml-inference",
            ml_timeout=3.0,
        )

        registry = SessionRegistry.from_settings(settings)

        assert isinstance(registry.store, SupabasePersistenceStore)
        assert registry.store.table == "kv"
        assert registry.adaptation_service.ml_client.timeout == 3.0
