"""
Configuration for rental analytics.
"""
import logging
import os
import warnings
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_GEOLOCATION_URL = "http://ip-api.com/json"

# Visits shorter than this are labelled as bounces
DEFAULT_BOUNCE_THRESHOLD_SECONDS = 10


class ConfigError(ValueError):
    """Raised when required configuration is missing or malformed."""
    pass


def _env_flag(name: str, default: bool) -> bool:
    """Read a boolean flag from the environment."""
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class AnalyticsConfig:
    """Configuration for a single analytics instance."""

    # Required
    supabase_url: str  # Project URL (e.g., "https://abc.supabase.co")
    supabase_anon_key: str

    # Reports read every row, so they prefer the service role key
    supabase_service_role_key: str | None = None

    # Enrichment
    geolocation_url: str = DEFAULT_GEOLOCATION_URL

    # Recording
    bounce_threshold_seconds: int = DEFAULT_BOUNCE_THRESHOLD_SECONDS

    # Capture
    tracking_enabled: bool = True
    page_dwell_seconds: float = 0.15
    car_dwell_seconds: float = 2.0
    excluded_path_prefixes: tuple[str, ...] = ("/admin", "/api")

    # Dashboard
    admin_role: str = "admin"
    max_report_rows: int = 10000

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.supabase_url or not self.supabase_url.strip():
            raise ConfigError("supabase_url is required")
        if not self.supabase_url.startswith(("http://", "https://")):
            raise ConfigError(
                f"supabase_url must be an http(s) URL, got {self.supabase_url!r}"
            )
        if not self.supabase_anon_key:
            raise ConfigError("supabase_anon_key is required")
        if self.bounce_threshold_seconds < 0:
            raise ConfigError("bounce_threshold_seconds must not be negative")

        self.supabase_url = self.supabase_url.rstrip("/")
        self.excluded_path_prefixes = tuple(self.excluded_path_prefixes)

        if not self.supabase_service_role_key:
            warnings.warn(
                "No service role key configured; dashboard reports will run "
                "with the anon key and only see rows it is allowed to read.",
                UserWarning,
                stacklevel=3,
            )
        logger.debug(f"Analytics configured for {self.supabase_url}")

    @property
    def rest_url(self) -> str:
        """Base URL of the table API."""
        return f"{self.supabase_url}/rest/v1"

    @property
    def auth_url(self) -> str:
        """Base URL of the auth API."""
        return f"{self.supabase_url}/auth/v1"

    @property
    def report_key(self) -> str:
        """Key used for dashboard queries."""
        return self.supabase_service_role_key or self.supabase_anon_key

    @classmethod
    def from_env(cls, **overrides) -> "AnalyticsConfig":
        """Build a config from environment variables.

        Reads SUPABASE_URL, SUPABASE_ANON_KEY, SUPABASE_SERVICE_ROLE_KEY,
        GEOLOCATION_URL and ANALYTICS_TRACKING_ENABLED. Keyword arguments
        override the environment.
        """
        values = {
            "supabase_url": os.environ.get("SUPABASE_URL", ""),
            "supabase_anon_key": os.environ.get("SUPABASE_ANON_KEY", ""),
            "supabase_service_role_key": os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or None,
            "geolocation_url": os.environ.get("GEOLOCATION_URL") or DEFAULT_GEOLOCATION_URL,
            "tracking_enabled": _env_flag("ANALYTICS_TRACKING_ENABLED", True),
        }
        values.update(overrides)
        return cls(**values)
