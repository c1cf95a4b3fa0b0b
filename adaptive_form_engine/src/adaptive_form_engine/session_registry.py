"""
Session Registry

Entry point for a tracking backend: hands out one SessionManager per session
id, shares a single UserHistoryRepository between them, and validates raw event
batches one event at a time.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from adaptive_form_engine.context_analyzer import ContextAnalyzer
from adaptive_form_engine.context_detectors import EnvironmentProbe
from adaptive_form_engine.errors import EventValidationError
from adaptive_form_engine.ml_inference import AdaptationService, MLInferenceClient
from adaptive_form_engine.models import Adaptation, BehaviorEvent, EnhancedProfile, Recommendation, parse_event
from adaptive_form_engine.persistence import InMemoryPersistenceStore, PersistenceStore, SupabasePersistenceStore
from adaptive_form_engine.scoring_config import DEFAULT_SCORING_CONFIG, ScoringConfig
from adaptive_form_engine.session_manager import SessionManager
from adaptive_form_engine.session_state import SessionState
from adaptive_form_engine.settings import Settings
from adaptive_form_engine.user_history import UserHistoryRepository

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcome of ingest_batch."""
    accepted: int = 0
    rejected: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)


class SessionRegistry:
    """Owns the live SessionManagers of a process."""

    def __init__(
        self,
        store: Optional[PersistenceStore] = None,
        config: ScoringConfig = DEFAULT_SCORING_CONFIG,
        persistence_timeout: float = 2.0,
        adaptation_service: Optional[AdaptationService] = None,
        clock=None,
        debugging: bool = False,
    ):
        self.store = store or InMemoryPersistenceStore()
        self.config = config
        self.persistence_timeout = persistence_timeout
        self.history_repository = UserHistoryRepository(
            self.store, timeout=persistence_timeout, max_sessions=config.max_session_summaries
        )
        self.analyzer = ContextAnalyzer(config)
        self.adaptation_service = adaptation_service or AdaptationService()
        self.clock = clock
        self.debugging = debugging
        self._managers: Dict[str, SessionManager] = {}

    @classmethod
    def from_settings(cls, settings: Settings, config: ScoringConfig = DEFAULT_SCORING_CONFIG) -> "SessionRegistry":
        """Build a registry backed by Supabase and the ML endpoint when they are configured."""
        if settings.supabase_configured:
            from adaptive_form_engine.supabase_client import get_supabase_client
            store = SupabasePersistenceStore(get_supabase_client(settings), table=settings.store_table)
            logger.info(f"✅ [SessionRegistry] Using Supabase store (table={settings.store_table})")
        else:
            store = InMemoryPersistenceStore()
            logger.info("ℹ️ [SessionRegistry] Supabase not configured, using in-memory store")

        ml_client = None
        if settings.ml_inference_url:
            ml_client = MLInferenceClient(settings.ml_inference_url, timeout=settings.ml_timeout)

        return cls(
            store=store,
            config=config,
            persistence_timeout=settings.persistence_timeout,
            adaptation_service=AdaptationService(ml_client=ml_client),
            debugging=settings.debug,
        )

    def get_manager(self, session_id: str, environment: Optional[EnvironmentProbe] = None) -> SessionManager:
        """Return the manager for session_id, creating it on first use."""
        manager = self._managers.get(session_id)
        if manager is None:
            manager = SessionManager(
                session_id,
                self.store,
                history_repository=self.history_repository,
                analyzer=self.analyzer,
                config=self.config,
                environment=environment,
                persistence_timeout=self.persistence_timeout,
                clock=self.clock,
                debugging=self.debugging,
            )
            self._managers[session_id] = manager
        return manager

    def active_sessions(self) -> List[str]:
        return list(self._managers.keys())

    async def initialize(
        self,
        session_id: str,
        user_id: Optional[str] = None,
        environment: Optional[EnvironmentProbe] = None,
    ) -> SessionState:
        return await self.get_manager(session_id, environment).initialize(user_id)

    async def ingest(self, event: BehaviorEvent) -> None:
        # Without an explicit probe, the first event's user agent describes the device
        environment = EnvironmentProbe(user_agent=event.user_agent, landing_page=event.url)
        await self.get_manager(event.session_id, environment).ingest(event)

    async def ingest_batch(self, payloads: Iterable[Dict[str, Any]]) -> BatchResult:
        """
        Validate and ingest raw event payloads in order.

        A malformed payload is rejected on its own; the rest of the batch is
        still ingested.
        """
        result = BatchResult()
        for index, payload in enumerate(payloads):
            try:
                event = parse_event(payload)
            except EventValidationError as e:
                result.rejected += 1
                result.errors.append({"index": index, "code": e.code, "message": e.message})
                logger.warning(f"⚠️ [SessionRegistry] Rejected event #{index}: {e}")
                continue

            await self.ingest(event)
            result.accepted += 1

        if result.rejected:
            logger.info(f"📥 [SessionRegistry] Batch ingested: {result.accepted} accepted, {result.rejected} rejected")
        return result

    async def record_adaptation(self, session_id: str, adaptation: Adaptation) -> None:
        await self.get_manager(session_id).record_adaptation(adaptation)

    async def propose_adaptations(self, session_id: str, form_id: str) -> List[Adaptation]:
        return await self.adaptation_service.propose_adaptations(self.get_manager(session_id), form_id)

    def get_recommendations(self, session_id: str) -> List[Recommendation]:
        return self.get_manager(session_id).get_recommendations()

    def get_enhanced_profile(self, session_id: str) -> EnhancedProfile:
        return self.get_manager(session_id).get_enhanced_profile()
