"""Application configuration for the challenge solver.

Central configuration module powered by Pydantic v2.  Settings are loaded
from environment variables (with ``.env`` file support).

Key exports:
    SolverSettings: Root settings model (instantiate once per process).
    BASE_DIR / CONFIG_DIR / LOGS_DIR: Canonical project paths.
"""

# pylint: disable=no-member

import logging
from pathlib import Path
from typing import Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict

# ---------------------------------------------------------------------------
# Base Paths
# ---------------------------------------------------------------------------
BASE_DIR: Path = Path(__file__).parent.parent
"""Project root directory (parent of ``core/``)."""

CONFIG_DIR: Path = BASE_DIR / "config"
"""Directory containing runtime state (transcript cache, credentials)."""

LOGS_DIR: Path = BASE_DIR / "logs"
"""Directory for log output files."""

logger: logging.Logger = logging.getLogger(__name__)


class SolverSettings(BaseSettings):
    """Root configuration model for the challenge solver.

    All fields can be set via environment variables or a ``.env`` file.

    Section overview:
        * **Core** -- log level, headless mode, navigation timeout.
        * **Polling** -- tick interval, debounce window, attempt caps.
        * **Bridge** -- cross-context request timeout.
        * **Speech API** -- Wit.ai token, API version, retry policy.
        * **Cache** -- memory capacity, durable TTL and location.
        * **Interaction** -- typing cadence, behaviour profile.
        * **Notifications** -- success alerts and optional webhook.
    """

    # Core
    log_level: str = "INFO"
    headless: bool = True
    navigation_timeout_ms: int = 30000

    # Polling
    poll_interval_seconds: float = 1.0
    # Minimum gap between two actions on the same page
    debounce_seconds: float = 2.0
    # Puzzle widget (Turnstile) attempt cap
    max_attempts: int = 30
    # Checkbox/audio (reCAPTCHA) attempt cap
    recaptcha_max_attempts: int = 5
    # ~20 polls of nothing rendering before assuming an invisible widget
    max_stabilization_attempts: int = 20

    # Bridge
    bridge_timeout_seconds: float = 30.0

    # Speech API
    wit_ai_token: Optional[str] = None
    wit_api_version: str = "20230215"
    wit_base_url: str = "https://api.wit.ai"
    speech_request_timeout_seconds: float = 10.0
    transcription_max_retries: int = 3
    # Linear backoff base: delay = base * attempt
    transcription_retry_delay_seconds: float = 1.0
    min_audio_bytes: int = 100

    # Cache
    memory_cache_size: int = 50
    cache_ttl_seconds: int = 60 * 60 * 24
    cache_file: str = str(CONFIG_DIR / "transcription_cache.json")
    cache_cleanup_interval_seconds: int = 60 * 60

    # Interaction
    typing_delay_ms: Tuple[int, int] = (30, 70)
    behavior_profile: Optional[str] = None

    # Credentials
    credential_file: str = str(CONFIG_DIR / "credentials.enc")

    # Notifications
    notifications_enabled: bool = True
    alert_webhook_url: Optional[str] = None
    notification_title: str = "Challenge Solver"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def typing_delay_range(self) -> Tuple[int, int]:
        """Return ``(min, max)`` per-key delay in ms, ordered."""
        low, high = self.typing_delay_ms
        return (min(low, high), max(low, high))
