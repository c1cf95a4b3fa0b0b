"""
Persistence Store

Abstract key-value capability used for session and user-history durability,
with an in-memory implementation and a Supabase-backed one.

Keys:
- session:{session_id}
- user:{user_id}

Values are opaque bytes (UTF-8 JSON written by the session manager). Absence
and corruption are both reported to the core as "nothing stored".
"""

import asyncio
import base64
import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from adaptive_form_engine.errors import PersistenceError

logger = logging.getLogger(__name__)

SESSION_PREFIX = "session:"
USER_PREFIX = "user:"


def session_key(session_id: str) -> str:
    return f"{SESSION_PREFIX}{session_id}"


def user_key(user_id: str) -> str:
    return f"{USER_PREFIX}{user_id}"


def encode_json(data: Dict[str, Any]) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


def decode_json(raw: Optional[bytes], key: str = "") -> Optional[Dict[str, Any]]:
    """Decode a stored value. Corrupt or non-object payloads count as absent."""
    if raw is None:
        return None
    try:
        data = json.loads(raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw)
    except (UnicodeDecodeError, json.JSONDecodeError, TypeError) as e:
        logger.warning(f"⚠️ [PersistenceStore] Corrupt value for {key}, treating as absent: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"⚠️ [PersistenceStore] Unexpected value shape for {key}, treating as absent")
        return None
    return data


class PersistenceStore(ABC):
    """Key-value durability contract required by the session core."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or None when nothing is stored."""

    @abstractmethod
    def set(self, key: str, value: bytes) -> None:
        """Store bytes under key. Raises PersistenceError on failure."""


class InMemoryPersistenceStore(PersistenceStore):
    """Process-local store. Used for tests and when no backend is configured."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = bytes(value)

    def keys(self):
        with self._lock:
            return list(self._data.keys())


class SupabasePersistenceStore(PersistenceStore):
    """
    Stores values in a Supabase table with columns (key text primary key,
    value text, updated_at timestamptz). Values are base64 encoded.
    """

    def __init__(self, supabase_client, table: str = "adapt_kv"):
        """
        Initialize SupabasePersistenceStore.

        Args:
            supabase_client: Supabase client instance
            table: Key-value table name
        """
        self.supabase = supabase_client
        self.table = table

    def get(self, key: str) -> Optional[bytes]:
        try:
            result = self.supabase.table(self.table) \
                .select('value') \
                .eq('key', key) \
                .limit(1) \
                .execute()
        except Exception as e:
            raise PersistenceError(f"Failed to read {key}", {"error": str(e)}) from e

        if not result.data:
            return None

        encoded = result.data[0].get('value')
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded, validate=True)
        except (ValueError, TypeError):
            logger.warning(f"⚠️ [SupabaseStore] Undecodable value for {key}, treating as absent")
            return None

    def set(self, key: str, value: bytes) -> None:
        row = {
            'key': key,
            'value': base64.b64encode(value).decode('ascii'),
            'updated_at': datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.supabase.table(self.table).upsert(row, on_conflict='key').execute()
        except Exception as e:
            raise PersistenceError(f"Failed to write {key}", {"error": str(e)}) from e


async def bounded_get(store: PersistenceStore, key: str, timeout: float) -> Optional[bytes]:
    """Read off the event loop with a time bound. Raises PersistenceError on failure."""
    try:
        return await asyncio.wait_for(asyncio.to_thread(store.get, key), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise PersistenceError(f"Timed out reading {key}", {"timeout": timeout}) from e
    except PersistenceError:
        raise
    except Exception as e:
        raise PersistenceError(f"Failed to read {key}", {"error": str(e)}) from e


async def bounded_set(store: PersistenceStore, key: str, value: bytes, timeout: float) -> None:
    """Write off the event loop with a time bound. Raises PersistenceError on failure."""
    try:
        await asyncio.wait_for(asyncio.to_thread(store.set, key, value), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise PersistenceError(f"Timed out writing {key}", {"timeout": timeout}) from e
    except PersistenceError:
        raise
    except Exception as e:
        raise PersistenceError(f"Failed to write {key}", {"error": str(e)}) from e
