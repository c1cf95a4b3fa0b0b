"""
User History Repository

Manages user-level behavioral data aggregated across sessions so a returning
visitor starts with priors learned from earlier visits.

Updates are read-modify-write under a per-user lock: the current session's
summary is appended (or replaced when already present), the list is trimmed to
the last 10 summaries, and the running averages are recomputed from it.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

from adaptive_form_engine.errors import PersistenceError
from adaptive_form_engine.persistence import (
    PersistenceStore,
    bounded_get,
    bounded_set,
    decode_json,
    encode_json,
    user_key,
)
from adaptive_form_engine.session_state import SessionState

logger = logging.getLogger(__name__)


@dataclass
class SessionSummary:
    """Compact record of one session kept in the user's history."""
    session_id: str
    start_time: float
    duration: float
    engagement_score: float
    event_count: int
    typing_speed: float = 0.5
    error_rate: float = 0.1
    confidence_level: float = 0.5
    average_hesitation: float = 2000.0
    precision: float = 0.5
    help_seeking: float = 0.3
    scroll_frequency: float = 0.3
    typing_confidence: float = 0.5


@dataclass
class UserHistory:
    """Cross-session aggregate for one user id."""
    user_id: str
    sessions: List[SessionSummary] = field(default_factory=list)
    typing_speed: float = 0.0
    error_rate: float = 0.0
    confidence_score: float = 0.0
    hesitation: float = 0.0
    precision: float = 0.0
    help_seeking_frequency: float = 0.0
    scroll_frequency: float = 0.0
    typing_confidence: float = 0.0
    last_visit: Optional[float] = None
    total_sessions: int = 0

    def has_session(self, session_id: str) -> bool:
        return any(s.session_id == session_id for s in self.sessions)

    def has_other_sessions(self, session_id: str) -> bool:
        return any(s.session_id != session_id for s in self.sessions)


def summarize_session(state: SessionState) -> SessionSummary:
    behavioral = state.context.behavioral
    return SessionSummary(
        session_id=state.session_id,
        start_time=state.start_time,
        duration=state.metrics.session_duration,
        engagement_score=state.metrics.engagement_score,
        event_count=state.metrics.total_events,
        typing_speed=behavioral.typing_speed,
        error_rate=behavioral.error_rate,
        confidence_level=behavioral.confidence_level,
        average_hesitation=behavioral.average_hesitation,
        precision=behavioral.precision,
        help_seeking=behavioral.help_seeking,
        scroll_frequency=behavioral.scroll_frequency,
        typing_confidence=behavioral.typing_confidence,
    )


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class UserHistoryRepository:
    """
    Loads and updates UserHistory records through the PersistenceStore.

    Shared by every session manager in a process; holds one lock per user id.
    """

    def __init__(self, store: PersistenceStore, timeout: float = 2.0, max_sessions: int = 10):
        """
        Initialize UserHistoryRepository.

        Args:
            store: PersistenceStore backing user:{user_id} keys
            timeout: Seconds allowed per store call
            max_sessions: Number of session summaries retained per user
        """
        self.store = store
        self.timeout = timeout
        self.max_sessions = max_sessions
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def load(self, user_id: Optional[str]) -> Optional[UserHistory]:
        """
        Get a user's history.

        Returns:
            UserHistory or None if absent, corrupt or unreachable
        """
        if not user_id:
            return None
        try:
            return await self._read(user_id)
        except PersistenceError as e:
            logger.warning(f"⚠️ [UserHistory] Could not load history for {user_id[:20]}: {e}")
            return None

    async def record_session(self, user_id: Optional[str], state: SessionState) -> Optional[UserHistory]:
        """
        Fold the session's current summary into the user's history.

        Returns:
            The updated UserHistory, or None if the update was skipped
        """
        if not user_id:
            return None

        async with self._lock_for(user_id):
            try:
                history = await self._read(user_id)
            except PersistenceError as e:
                # Never overwrite history we could not read; the next write retries
                logger.warning(f"⚠️ [UserHistory] Skipping update for {user_id[:20]}, read failed: {e}")
                return None

            if history is None:
                history = UserHistory(user_id=user_id)

            self._apply_summary(history, summarize_session(state))
            history.last_visit = state.last_activity

            try:
                await bounded_set(self.store, user_key(user_id), encode_json(self.history_to_dict(history)), self.timeout)
            except PersistenceError as e:
                logger.warning(f"⚠️ [UserHistory] Failed to save history for {user_id[:20]}: {e}")
                return None

            return history

    def _apply_summary(self, history: UserHistory, summary: SessionSummary) -> None:
        if not history.has_session(summary.session_id):
            history.total_sessions += 1

        sessions = [s for s in history.sessions if s.session_id != summary.session_id]
        sessions.append(summary)
        history.sessions = sessions[-self.max_sessions:]

        recent = history.sessions
        history.typing_speed = _mean([s.typing_speed for s in recent])
        history.error_rate = _mean([s.error_rate for s in recent])
        history.confidence_score = _mean([s.confidence_level for s in recent])
        history.hesitation = _mean([s.average_hesitation for s in recent])
        history.precision = _mean([s.precision for s in recent])
        history.help_seeking_frequency = _mean([s.help_seeking for s in recent])
        history.scroll_frequency = _mean([s.scroll_frequency for s in recent])
        history.typing_confidence = _mean([s.typing_confidence for s in recent])

    async def _read(self, user_id: str) -> Optional[UserHistory]:
        key = user_key(user_id)
        data = decode_json(await bounded_get(self.store, key, self.timeout), key)
        if data is None:
            return None
        try:
            return self.dict_to_history(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"⚠️ [UserHistory] Malformed history for {user_id[:20]}, treating as absent: {e}")
            return None

    @staticmethod
    def history_to_dict(history: UserHistory) -> Dict:
        return asdict(history)

    @staticmethod
    def dict_to_history(data: Dict) -> UserHistory:
        sessions = [SessionSummary(**s) for s in data.get("sessions") or []]
        return UserHistory(
            user_id=data["user_id"],
            sessions=sessions,
            typing_speed=data.get("typing_speed", 0.0),
            error_rate=data.get("error_rate", 0.0),
            confidence_score=data.get("confidence_score", 0.0),
            hesitation=data.get("hesitation", 0.0),
            precision=data.get("precision", 0.0),
            help_seeking_frequency=data.get("help_seeking_frequency", 0.0),
            scroll_frequency=data.get("scroll_frequency", 0.0),
            typing_confidence=data.get("typing_confidence", 0.0),
            last_visit=data.get("last_visit"),
            total_sessions=data.get("total_sessions", 0),
        )
