"""Runtime configuration from environment variables."""

import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field

from .models import AuthCredentials


class Settings(BaseModel):
    """Storefront session settings."""

    api_url: str = Field(default="http://localhost:8000/api", description="Backend base URL")
    state_file: str = Field(
        default_factory=lambda: str(Path.home() / ".storefront_session.json"),
        description="File holding the cart and the token pair",
    )
    email: Optional[str] = None
    password: Optional[str] = None
    stripe_publishable_key: Optional[str] = None
    stripe_api_url: str = "https://api.stripe.com/v1"
    max_confirm_attempts: int = Field(default=3, ge=1)
    log_level: str = "INFO"
    timeout: float = 30.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``STOREFRONT_*`` variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        values = {
            "api_url": env.get("STOREFRONT_API_URL"),
            "state_file": env.get("STOREFRONT_STATE_FILE"),
            "email": env.get("STOREFRONT_EMAIL"),
            "password": env.get("STOREFRONT_PASSWORD"),
            "stripe_publishable_key": env.get("STOREFRONT_STRIPE_PUBLISHABLE_KEY"),
            "stripe_api_url": env.get("STOREFRONT_STRIPE_API_URL"),
            "max_confirm_attempts": env.get("STOREFRONT_MAX_CONFIRM_ATTEMPTS"),
            "log_level": env.get("STOREFRONT_LOG_LEVEL"),
            "timeout": env.get("STOREFRONT_TIMEOUT"),
        }
        try:
            return cls(**{key: value for key, value in values.items() if value})
        except ValueError as e:
            raise ValueError(f"Invalid storefront configuration: {e}") from e

    @property
    def credentials(self) -> Optional[AuthCredentials]:
        if self.email and self.password:
            return AuthCredentials(email=self.email, password=self.password)
        return None
