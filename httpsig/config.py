"""
Configuration Management

Defaults for the signature engine using Pydantic Settings, loaded from
``HTTPSIG_*`` environment variables (or a ``.env`` file).

Settings only provide defaults: every option can still be passed per call
through VerifyOptions or the KeyResolver constructor.
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Signature engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="HTTPSIG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============================================================
    # Verification
    # ============================================================
    max_clock_skew: int = Field(60, ge=0, description="Accepted |now - created| in seconds")
    strict_aauth: bool = Field(True, description="Require signature-key to be a covered component")

    # ============================================================
    # Key resolution
    # ============================================================
    jwks_cache_ttl: float = Field(3600.0, gt=0, description="Lifetime of cached JWKS/metadata documents (seconds)")
    discovery_timeout: float = Field(10.0, gt=0, description="Timeout for well-known metadata requests (seconds)")
    jwks_timeout: Optional[float] = Field(None, gt=0, description="Timeout for JWKS requests; unset uses the HTTP client's")

    # ============================================================
    # Signing
    # ============================================================
    default_label: str = Field("sig", pattern=r"^[a-z*][a-z0-9_\-.*]*$", description="Signature label used when none is given")


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get engine settings (singleton).

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
