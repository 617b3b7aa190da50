"""Client configuration for step-up verification."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ENV_PREFIX = "STEPUP_"


class AuthConfig(BaseModel):
    """
    Step-up client configuration.

    Durations are in seconds. The TOTP period is shared by code
    verification and the provisioning URI so both ends always agree.
    """

    # Remote authority
    authority_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the verification/login service",
    )
    request_timeout_seconds: float = Field(
        default=10,
        description="Per-request HTTP timeout",
        gt=0,
        le=120,
    )

    # Out-of-band confirmation polling
    poll_interval_seconds: float = Field(
        default=2.0,
        description="Delay between email confirmation checks",
        gt=0,
        le=60,
    )
    poll_max_wait_seconds: float = Field(
        default=600,  # 10 minutes
        description="Give up waiting for email confirmation after this long",
        ge=1,
        le=3600,
    )

    # TOTP
    totp_period_seconds: int = Field(
        default=30,
        description="TOTP time step; also written into the provisioning URI",
        ge=15,
        le=120,
    )
    totp_digits: int = Field(default=6, ge=6, le=8)
    totp_valid_window: int = Field(
        default=0,
        description="Adjacent time steps accepted on either side",
        ge=0,
        le=2,
    )
    totp_issuer: str = Field(default="StepUp", min_length=1)

    # Biometric capture
    capture_width: int = Field(default=240, ge=64, le=1920)
    capture_height: int = Field(default=180, ge=48, le=1080)

    # Persisted client state
    credential_store_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis-compatible URL for session persistence",
    )
    credential_key_prefix: str = Field(default="stepup:credentials:")

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> "AuthConfig":
        """
        Build config from STEPUP_* environment variables.

        A .env file is loaded first (without overriding the shell), so
        e.g. STEPUP_TOTP_PERIOD_SECONDS=60 sets totp_period_seconds.
        Unset variables fall back to field defaults.
        """
        load_dotenv(dotenv_path)
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = raw
        return cls(**values)
