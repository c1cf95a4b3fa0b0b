"""
Settings loaded from the environment (.env supported)
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number (got {value!r})")


@dataclass(frozen=True)
class Settings:
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    store_table: str = "adapt_kv"
    persistence_timeout: float = 2.0
    ml_inference_url: Optional[str] = None
    ml_timeout: float = 5.0
    debug: bool = False

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)


def load_settings() -> Settings:
    """Read settings from os.environ"""
    return Settings(
        supabase_url=os.getenv("SUPABASE_URL"),
        supabase_service_key=os.getenv("SUPABASE_SERVICE_KEY"),
        store_table=os.getenv("ADAPT_STORE_TABLE", "adapt_kv"),
        persistence_timeout=_env_float("ADAPT_PERSISTENCE_TIMEOUT", 2.0),
        ml_inference_url=os.getenv("ADAPT_ML_INFERENCE_URL") or None,
        ml_timeout=_env_float("ADAPT_ML_TIMEOUT", 5.0),
        debug=os.getenv("ADAPT_DEBUG", "false").lower() in ("1", "true", "yes"),
    )
