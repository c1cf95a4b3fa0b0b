"""
Session Manager

Owns one session's lifecycle: restores or creates its SessionState, ingests
behavior events, recomputes engagement / conversion scores and the derived
flags, and persists the result through the PersistenceStore.

Mutations of a session are serialized by a per-session asyncio.Lock. Store
calls are time-bounded; when they fail the session keeps running in memory and
the next write retries.
"""

import asyncio
import logging
import time
from dataclasses import asdict, replace
from typing import Any, Callable, Dict, List, Optional

from adaptive_form_engine.context_analyzer import ContextAnalyzer
from adaptive_form_engine.context_detectors import (
    EnvironmentProbe,
    detect_browser_context,
    detect_device_context,
    detect_session_context,
    detect_temporal_context,
)
from adaptive_form_engine.errors import EventValidationError, PersistenceError
from adaptive_form_engine.models import (
    Adaptation,
    BehaviorEvent,
    EnhancedProfile,
    EventType,
    Recommendation,
    UserProfile,
)
from adaptive_form_engine.persistence import (
    PersistenceStore,
    bounded_get,
    bounded_set,
    decode_json,
    encode_json,
    session_key,
)
from adaptive_form_engine.scoring_config import DEFAULT_SCORING_CONFIG, ScoringConfig
from adaptive_form_engine.session_state import (
    AdaptationRecord,
    BehavioralContext,
    BrowserContext,
    DeviceContext,
    SessionContext,
    SessionContextData,
    SessionFlags,
    SessionMetrics,
    SessionState,
    TemporalContext,
)
from adaptive_form_engine.user_history import UserHistory, UserHistoryRepository

logger = logging.getLogger(__name__)


def _now_ms() -> float:
    return time.time() * 1000


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class SessionManager:
    """
    Manages one session's state, scoring and persistence.

    Scores are recomputed after every ingested event, in this order:
    engagement score → conversion likelihood → high-value / assistance /
    abandonment flags. Conversion therefore sees the abandonment flag from the
    previous event.
    """

    def __init__(
        self,
        session_id: str,
        store: PersistenceStore,
        history_repository: Optional[UserHistoryRepository] = None,
        analyzer: Optional[ContextAnalyzer] = None,
        config: ScoringConfig = DEFAULT_SCORING_CONFIG,
        environment: Optional[EnvironmentProbe] = None,
        persistence_timeout: float = 2.0,
        clock: Optional[Callable[[], float]] = None,
        debugging: bool = False,
    ):
        """
        Initialize SessionManager.

        Args:
            session_id: Session identifier
            store: PersistenceStore for session:{session_id}
            history_repository: Shared UserHistoryRepository (optional)
            analyzer: ContextAnalyzer (created from config if omitted)
            config: Scoring thresholds
            environment: EnvironmentProbe snapshot for context detection
            persistence_timeout: Seconds allowed per store call
            clock: Returns the current time in milliseconds
            debugging: Log every update at INFO instead of DEBUG
        """
        self.session_id = session_id
        self.store = store
        self.history_repository = history_repository or UserHistoryRepository(
            store, timeout=persistence_timeout, max_sessions=config.max_session_summaries
        )
        self.config = config
        self.analyzer = analyzer or ContextAnalyzer(config)
        self.environment = environment
        self.persistence_timeout = persistence_timeout
        self.clock = clock or _now_ms
        self.debugging = debugging

        self.state: Optional[SessionState] = None
        self.pending_write = False
        self._lock: Optional[asyncio.Lock] = None

    def _session_lock(self) -> asyncio.Lock:
        # Created on first use so it binds to the running loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    # ==================== Lifecycle ====================

    async def initialize(self, user_id: Optional[str] = None) -> SessionState:
        """
        Load the persisted session, or build a fresh one seeded from context
        detectors and the user's history. Calling it again returns the same state.
        """
        async with self._session_lock():
            return await self._ensure_initialized(user_id)

    async def _ensure_initialized(self, user_id: Optional[str] = None) -> SessionState:
        if self.state is not None:
            if user_id and not self.state.user_id:
                self.state.user_id = user_id
            return self.state

        persisted = await self._load_session()
        if persisted is not None:
            if user_id and not persisted.user_id:
                persisted.user_id = user_id
            self.state = persisted
            logger.info(
                f"💾 [SessionManager] Restored session {self.session_id} "
                f"({persisted.metrics.total_events} events, {persisted.metrics.total_adaptations} adaptations)"
            )
            return self.state

        history = await self.history_repository.load(user_id)
        now = self.clock()
        self.state = SessionState(
            session_id=self.session_id,
            user_id=user_id,
            start_time=now,
            last_activity=now,
            context=SessionContext(
                device=detect_device_context(self.environment),
                browser=detect_browser_context(self.environment),
                temporal=detect_temporal_context(self.environment),
                behavioral=self._initialize_behavioral_context(history),
                session=detect_session_context(self.environment),
            ),
            metrics=SessionMetrics(conversion_likelihood=self.config.base_conversion),
            flags=SessionFlags(
                is_returning_user=history is not None and history.has_other_sessions(self.session_id),
            ),
        )
        logger.info(
            f"🆕 [SessionManager] Created session {self.session_id} "
            f"(device={self.state.context.device.type}, returning={self.state.flags.is_returning_user})"
        )
        return self.state

    def _initialize_behavioral_context(self, history: Optional[UserHistory]) -> BehavioralContext:
        defaults = BehavioralContext()
        if history is None:
            return defaults

        # Zero averages mean "never measured", so fall back to the default prior
        return BehavioralContext(
            typing_speed=history.typing_speed or defaults.typing_speed,
            error_rate=history.error_rate or defaults.error_rate,
            confidence_level=history.confidence_score or defaults.confidence_level,
            average_hesitation=history.hesitation or defaults.average_hesitation,
            precision=history.precision or defaults.precision,
            help_seeking=history.help_seeking_frequency or defaults.help_seeking,
            recent_engagement=defaults.recent_engagement,
            scroll_frequency=history.scroll_frequency or defaults.scroll_frequency,
            typing_confidence=history.typing_confidence or defaults.typing_confidence,
        )

    # ==================== Mutations ====================

    def _detect_environment_from_event(self, state: SessionState, event: BehaviorEvent) -> None:
        """Fill device and browser context from the first event when the session started without an environment."""
        if state.context.device.type != "unknown" or not event.user_agent:
            return

        probe = EnvironmentProbe(user_agent=event.user_agent, landing_page=event.url)
        state.context.device = detect_device_context(probe)
        if state.context.browser.name == "unknown":
            state.context.browser = detect_browser_context(probe)
        if self.environment is None:
            self.environment = probe
        logger.debug(
            f"🔍 [SessionManager] Detected {state.context.device.type} device for {self.session_id} from first event"
        )

    async def ingest(self, event: BehaviorEvent) -> None:
        """Append an event, refresh behavioral context, scores and flags, then persist."""
        if event.session_id != self.session_id:
            raise EventValidationError(
                f"Event for session {event.session_id} sent to session {self.session_id}",
                {"session_id": event.session_id},
            )

        async with self._session_lock():
            state = await self._ensure_initialized()

            if not state.events:
                self._detect_environment_from_event(state, event)
                state.start_time = event.timestamp
                state.last_activity = event.timestamp
            state.events.append(event)
            state.start_time = min(state.start_time, event.timestamp)
            state.last_activity = max(state.last_activity, event.timestamp)
            state.metrics.total_events = len(state.events)
            state.metrics.session_duration = state.last_activity - state.start_time

            self.analyzer.analyze_event(event, state)
            self._update_session_flags()

            await self._persist()

            self._log_update(
                "Session updated with event",
                {
                    "event_type": event.event_type.value,
                    "total_events": state.metrics.total_events,
                    "engagement_score": round(state.metrics.engagement_score, 3),
                },
            )

    async def record_adaptation(self, adaptation: Adaptation) -> None:
        """Append an applied adaptation with a snapshot of the session, then persist."""
        async with self._session_lock():
            state = await self._ensure_initialized()

            applied = adaptation if adaptation.applied_at is not None else replace(adaptation, applied_at=self.clock())
            state.adaptations.append(AdaptationRecord(
                adaptation=applied,
                session_context=self._get_session_context(),
            ))
            state.metrics.total_adaptations = len(state.adaptations)

            self.analyzer.analyze_adaptation_impact(applied, state)

            await self._persist()

            self._log_update(
                "Session updated with adaptation",
                {
                    "adaptation_type": applied.adaptation_type.value,
                    "confidence": applied.confidence,
                    "source": applied.source,
                },
            )

    async def update_profile(self, profile: UserProfile) -> None:
        """Attach the latest per-session UserProfile and persist."""
        async with self._session_lock():
            state = await self._ensure_initialized()
            state.user_profile = profile
            await self._persist()

    # ==================== Reads ====================

    def get_recommendations(self) -> List[Recommendation]:
        """Contextual recommendations for the current state. Pure read."""
        if self.state is None:
            return []
        return self.analyzer.generate_recommendations(self.state)

    def get_enhanced_profile(self) -> EnhancedProfile:
        """Profile, metrics and analysis for dashboards. Pure read."""
        state = self.state or SessionState(session_id=self.session_id)
        return EnhancedProfile(
            session_id=state.session_id,
            user_id=state.user_id,
            base_profile=state.user_profile,
            session_metrics=asdict(state.metrics),
            contextual_insights=self.analyzer.get_contextual_insights(state),
            behavioral_patterns=self.analyzer.get_behavioral_patterns(state),
            risk_factors=self.identify_risk_factors(state),
            opportunities=self.identify_opportunities(state),
            session_flags=asdict(state.flags),
        )

    # ==================== Scoring ====================

    def _update_session_flags(self) -> None:
        state = self.state
        metrics = state.metrics

        metrics.engagement_score = self.calculate_engagement_score(state)
        metrics.conversion_likelihood = self.calculate_conversion_likelihood(state)

        state.flags.is_high_value_session = metrics.engagement_score > self.config.high_value_engagement
        state.flags.needs_assistance = self.detect_needs_assistance(state)
        state.flags.risk_of_abandonment = self.detect_abandonment_risk(state)

    def calculate_engagement_score(self, state: SessionState) -> float:
        cfg = self.config
        events = state.events
        if not events:
            return 0.0

        score = 0.0

        event_types = {e.event_type for e in events}
        score += min(len(event_types) / cfg.diversity_divisor, cfg.diversity_cap)

        # Optimal session length is a few minutes; longer sessions decay towards a floor
        duration_minutes = state.metrics.session_duration / 60000
        if cfg.optimal_duration_min_minutes <= duration_minutes <= cfg.optimal_duration_max_minutes:
            score += cfg.optimal_duration_weight
        elif duration_minutes > cfg.optimal_duration_max_minutes:
            score += max(
                cfg.long_duration_floor,
                cfg.optimal_duration_weight
                - (duration_minutes - cfg.optimal_duration_max_minutes) * cfg.long_duration_decay_per_minute,
            )

        events_per_minute = len(events) / max(duration_minutes, 1)
        if cfg.activity_rate_min <= events_per_minute <= cfg.activity_rate_max:
            score += cfg.activity_rate_weight

        if state.events_of_type(EventType.FORM_SUBMIT):
            score += cfg.form_submit_weight
        if len(state.events_of_type(EventType.FIELD_CHANGE)) > cfg.field_change_threshold:
            score += cfg.field_change_weight

        return _clamp(score)

    def calculate_conversion_likelihood(self, state: SessionState) -> float:
        cfg = self.config
        behavioral = state.context.behavioral
        likelihood = cfg.base_conversion

        if state.flags.is_returning_user:
            likelihood += cfg.returning_user_bonus
        if state.events_of_type(EventType.FORM_SUBMIT):
            likelihood += cfg.form_submit_bonus
        if state.adaptations:
            likelihood += cfg.adaptation_bonus
        if behavioral.confidence_level > cfg.high_confidence_threshold:
            likelihood += cfg.high_confidence_bonus

        if state.flags.risk_of_abandonment:
            likelihood -= cfg.abandonment_penalty
        if behavioral.error_rate > cfg.conversion_error_rate_threshold:
            likelihood -= cfg.error_rate_penalty
        if state.metrics.session_duration > cfg.long_session_ms:
            likelihood -= cfg.long_session_penalty

        return _clamp(likelihood)

    def detect_needs_assistance(self, state: SessionState) -> bool:
        cfg = self.config
        behavioral = state.context.behavioral

        if behavioral.error_rate > cfg.assistance_error_rate:
            return True
        if behavioral.average_hesitation > cfg.assistance_hesitation_ms:
            return True

        failed_submissions = [
            e for e in state.events_of_type(EventType.FORM_SUBMIT)
            if e.data.get("success") is False
        ]
        if len(failed_submissions) > cfg.assistance_failed_submissions:
            return True

        return behavioral.typing_confidence < cfg.assistance_typing_confidence

    def detect_abandonment_risk(self, state: SessionState) -> bool:
        cfg = self.config
        metrics = state.metrics

        if metrics.session_duration > cfg.long_session_ms and metrics.total_events < cfg.stalled_session_max_events:
            return True
        if len(state.events) < cfg.bounce_max_events and metrics.session_duration > cfg.bounce_duration_ms:
            return True
        if len(state.events_of_type(EventType.VISIBILITY_CHANGE)) > cfg.visibility_change_threshold:
            return True
        return state.context.behavioral.recent_engagement < cfg.low_engagement_threshold

    def identify_risk_factors(self, state: SessionState) -> List[str]:
        cfg = self.config
        behavioral = state.context.behavioral
        risks = []

        if behavioral.error_rate > cfg.risk_error_rate:
            risks.append("High error rate detected")
        if state.metrics.session_duration > cfg.long_session_ms:
            risks.append("Extended session duration suggests difficulty")
        if state.flags.risk_of_abandonment:
            risks.append("User showing abandonment patterns")
        if state.context.device.is_mobile and behavioral.scroll_frequency > cfg.mobile_scroll_frequency:
            risks.append("Excessive scrolling on mobile device")
        if state.context.temporal.time_of_day == "late_night" and behavioral.typing_speed < cfg.late_night_typing_speed:
            risks.append("Low performance during late hours")

        return risks

    def identify_opportunities(self, state: SessionState) -> List[str]:
        cfg = self.config
        behavioral = state.context.behavioral
        opportunities = []

        if state.flags.is_returning_user and behavioral.confidence_level > cfg.high_confidence_threshold:
            opportunities.append("High-confidence returning user - optimize for efficiency")
        if behavioral.typing_speed > cfg.fast_typing_speed and behavioral.error_rate < cfg.accurate_error_rate:
            opportunities.append("Fast, accurate user - enable advanced features")
        if state.context.device.is_mobile and behavioral.precision < cfg.low_precision:
            opportunities.append("Mobile user with precision issues - optimize touch targets")
        if state.metrics.engagement_score > cfg.high_value_engagement and not state.flags.is_high_value_session:
            opportunities.append("High engagement detected - potential for conversion")
        if behavioral.help_seeking > cfg.help_seeking_threshold:
            opportunities.append("User seeking help - provide enhanced guidance")

        return opportunities

    def _get_session_context(self) -> Dict[str, Any]:
        state = self.state
        return {
            "timestamp": self.clock(),
            "session_duration": state.metrics.session_duration,
            "event_count": state.metrics.total_events,
            "engagement_score": state.metrics.engagement_score,
            "flags": asdict(state.flags),
        }

    # ==================== Persistence ====================

    async def _load_session(self) -> Optional[SessionState]:
        key = session_key(self.session_id)
        try:
            data = decode_json(await bounded_get(self.store, key, self.persistence_timeout), key)
        except PersistenceError as e:
            logger.warning(f"⚠️ [SessionManager] Could not load session {self.session_id}, starting fresh: {e}")
            return None

        if data is None:
            return None
        try:
            return self.dict_to_session(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"⚠️ [SessionManager] Malformed stored session {self.session_id}, treating as absent: {e}")
            return None

    async def _persist(self) -> None:
        state = self.state
        try:
            await bounded_set(
                self.store,
                session_key(self.session_id),
                encode_json(self.session_to_dict(state)),
                self.persistence_timeout,
            )
            if self.pending_write:
                logger.info(f"✅ [SessionManager] Persistence recovered for session {self.session_id}")
            self.pending_write = False
        except PersistenceError as e:
            self.pending_write = True
            logger.warning(f"⚠️ [SessionManager] Failed to persist session {self.session_id}, retrying on next write: {e}")

        if state.user_id:
            await self.history_repository.record_session(state.user_id, state)

    def session_to_dict(self, state: SessionState) -> Dict[str, Any]:
        """
        Convert SessionState to a JSON-safe dictionary for storage.

        Args:
            state: SessionState object

        Returns:
            Dictionary representation
        """
        return {
            "session_id": state.session_id,
            "user_id": state.user_id,
            "start_time": state.start_time,
            "last_activity": state.last_activity,
            "events": [e.to_dict() for e in state.events],
            "adaptations": [
                {"adaptation": r.adaptation.to_dict(), "session_context": r.session_context}
                for r in state.adaptations
            ],
            "user_profile": state.user_profile.to_dict() if state.user_profile else None,
            "context": asdict(state.context),
            "metrics": asdict(state.metrics),
            "flags": asdict(state.flags),
        }

    def dict_to_session(self, data: Dict[str, Any]) -> SessionState:
        """
        Convert a stored dictionary back to SessionState.

        Args:
            data: Dictionary from the store

        Returns:
            SessionState object
        """
        context = data.get("context") or {}
        return SessionState(
            session_id=data["session_id"],
            user_id=data.get("user_id"),
            start_time=data.get("start_time", 0.0),
            last_activity=data.get("last_activity", 0.0),
            events=[BehaviorEvent.from_dict(e) for e in data.get("events") or []],
            adaptations=[
                AdaptationRecord(
                    adaptation=Adaptation.from_dict(r["adaptation"]),
                    session_context=r.get("session_context") or {},
                )
                for r in data.get("adaptations") or []
            ],
            user_profile=UserProfile.from_dict(data["user_profile"]) if data.get("user_profile") else None,
            context=SessionContext(
                device=DeviceContext(**(context.get("device") or {})),
                browser=BrowserContext(**(context.get("browser") or {})),
                temporal=TemporalContext(**(context.get("temporal") or {})),
                behavioral=BehavioralContext(**(context.get("behavioral") or {})),
                session=SessionContextData(**(context.get("session") or {})),
            ),
            metrics=SessionMetrics(**(data.get("metrics") or {})),
            flags=SessionFlags(**(data.get("flags") or {})),
        )

    def _log_update(self, message: str, data: Dict[str, Any]) -> None:
        level = logging.INFO if self.debugging else logging.DEBUG
        logger.log(level, f"📊 [SessionManager] {message}: session={self.session_id} {data}")
