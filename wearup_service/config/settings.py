"""
Settings Module
Centralized configuration from environment variables.
"""
import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

CHARGE_ON_SUBMIT = "on_submit"
CHARGE_ON_SUCCESS = "on_success"


@dataclass(frozen=True)
class BillingPolicy:
    """How much a job kind costs and when the cost is taken."""
    cost: int
    charge: str = CHARGE_ON_SUBMIT


def _default_data_dir() -> str:
    return str(Path(__file__).parent.parent / "data")


@dataclass
class Settings:
    """Application settings from environment variables."""

    # Storage
    data_dir: str = field(default_factory=_default_data_dir)
    storage_backend: str = "local"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    covers_bucket: str = "covers"
    reference_bucket: str = "reference"

    # Database
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db_name: str = "wearup"
    mongo_enabled: bool = True

    # API Keys
    replicate_api_token: Optional[str] = None
    gemini_api_key: Optional[str] = None

    # Image fetching
    fetch_timeout: float = 15.0
    fetch_pool_size: int = 50
    fetch_max_bytes: int = 25 * 1024 * 1024

    # Job polling
    poll_interval: float = 2.0
    poll_max_attempts: int = 60
    poll_timeout: Optional[float] = None

    # Billing
    cost_training: int = 100
    cost_video: int = 100
    cost_image: int = 50

    # Reference generation
    reference_model: str = "black-forest-labs/flux-kontext-pro"
    reference_cell_size: int = 512

    logging_enabled: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        poll_timeout = os.getenv("WEARUP_POLL_TIMEOUT")

        return cls(
            # Storage
            data_dir=os.getenv("WEARUP_DATA_DIR", _default_data_dir()),
            storage_backend=os.getenv("WEARUP_STORAGE_BACKEND", "local").lower(),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_ANON_KEY"),
            covers_bucket=os.getenv("WEARUP_COVERS_BUCKET", "covers"),
            reference_bucket=os.getenv("WEARUP_REFERENCE_BUCKET", "reference"),

            # Database
            mongo_uri=os.getenv("MONGO_URI", "mongodb://localhost:27017"),
            mongo_db_name=os.getenv("MONGO_DB_NAME", "wearup"),
            mongo_enabled=os.getenv("WEARUP_MONGO_ENABLED", "true").lower() == "true",

            # API Keys
            replicate_api_token=os.getenv("REPLICATE_API_TOKEN"),
            gemini_api_key=os.getenv("GEMINI_API_KEY"),

            # Image fetching
            fetch_timeout=float(os.getenv("WEARUP_FETCH_TIMEOUT", "15")),
            fetch_pool_size=int(os.getenv("WEARUP_FETCH_POOL_SIZE", "50")),
            fetch_max_bytes=int(os.getenv("WEARUP_FETCH_MAX_BYTES", str(25 * 1024 * 1024))),

            # Job polling
            poll_interval=float(os.getenv("WEARUP_POLL_INTERVAL", "2")),
            poll_max_attempts=int(os.getenv("WEARUP_POLL_MAX_ATTEMPTS", "60")),
            poll_timeout=float(poll_timeout) if poll_timeout else None,

            # Billing
            cost_training=int(os.getenv("WEARUP_COST_TRAINING", "100")),
            cost_video=int(os.getenv("WEARUP_COST_VIDEO", "100")),
            cost_image=int(os.getenv("WEARUP_COST_IMAGE", "50")),

            # Reference generation
            reference_model=os.getenv("WEARUP_REFERENCE_MODEL", "black-forest-labs/flux-kontext-pro"),
            reference_cell_size=int(os.getenv("WEARUP_REFERENCE_CELL_SIZE", "512")),

            logging_enabled=os.getenv("WEARUP_LOGGING_ENABLED", "true").lower() == "true",
        )

    def has_supabase(self) -> bool:
        """Check if Supabase credentials are configured."""
        return bool(self.supabase_url and self.supabase_key)

    def has_replicate(self) -> bool:
        """Check if Replicate API token is configured."""
        return bool(self.replicate_api_token)

    def has_gemini(self) -> bool:
        """Check if Gemini API key is configured."""
        return bool(self.gemini_api_key)

    def billing_policies(self) -> Dict[str, BillingPolicy]:
        """Cost and charge timing per job kind."""
        return {
            "training": BillingPolicy(cost=self.cost_training, charge=CHARGE_ON_SUCCESS),
            "video": BillingPolicy(cost=self.cost_video, charge=CHARGE_ON_SUBMIT),
            "image": BillingPolicy(cost=self.cost_image, charge=CHARGE_ON_SUBMIT),
        }

    def to_dict(self) -> dict:
        """Export settings as dict (without sensitive keys)."""
        return {
            "storage_backend": self.storage_backend,
            "supabase_configured": self.has_supabase(),
            "mongo_enabled": self.mongo_enabled,
            "replicate_configured": self.has_replicate(),
            "gemini_configured": self.has_gemini(),
            "poll_interval": self.poll_interval,
            "poll_max_attempts": self.poll_max_attempts,
            "costs": {
                "training": self.cost_training,
                "video": self.cost_video,
                "image": self.cost_image,
            },
        }


def get_settings() -> Settings:
    """Get application settings (cached singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
        logger.info(f"Settings loaded: {_settings.to_dict()}")
    return _settings


def reload_settings() -> Settings:
    """Force reload settings from environment."""
    global _settings
    _settings = Settings.from_env()
    logger.info(f"Settings reloaded: {_settings.to_dict()}")
    return _settings


# Singleton instance
_settings: Optional[Settings] = None
