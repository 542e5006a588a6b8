from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for the login secret, session signing, and provider keys."""
    app_password: str
    session_secret: str
    gemini_api_key: str
    openai_api_key: str
    anthropic_api_key: str
    gemini_health_model: str
    environment: str

    @property
    def signing_secret(self) -> str:
        """Secret used to sign session tokens; falls back to the login password."""
        return self.session_secret or self.app_password

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables only.
    Dependencies: Uses os.getenv; callers load .env first via python-dotenv.
    Failure Modes: None at load time. Missing secrets or API keys surface as
        ConfigurationError when the dependent operation is first used.
    If Removed: App cannot resolve its password, signing secret, or provider keys.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Secrets are kept verbatim; API keys and names are stripped of stray whitespace.
    return Settings(
        app_password=os.getenv("APP_PASSWORD", ""),
        session_secret=os.getenv("SESSION_SECRET", ""),
        gemini_api_key=os.getenv("GEMINI_API_KEY", "").strip(),
        openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", "").strip(),
        gemini_health_model=os.getenv("GEMINI_HEALTH_MODEL", "gemini-2.5-flash").strip(),
        environment=os.getenv("APP_ENV", "development").strip(),
    )
