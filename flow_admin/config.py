"""Server configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(v.strip() for v in value.split(",") if v.strip())


@dataclass(frozen=True)
class Settings:
    """Immutable server settings.

    ``api_key`` empty means open access (local development).
    """

    flows_file: str | None = None
    credentials_file: str | None = None
    credential_definitions_file: str | None = None
    api_key: str = field(default="", repr=False)
    audit_dsn: str | None = field(default=None, repr=False)
    log_level: str = "WARNING"
    cors_origins: tuple[str, ...] = ("http://localhost:3000",)
    write_rate_limit: str = "60/minute"

    @classmethod
    def from_env(cls) -> Settings:
        rate = os.getenv("RATE_LIMIT_WRITES_PER_MIN", "60").strip()
        return cls(
            flows_file=os.getenv("FLOW_ADMIN_FLOWS_FILE") or None,
            credentials_file=os.getenv("FLOW_ADMIN_CREDENTIALS_FILE") or None,
            credential_definitions_file=os.getenv("FLOW_ADMIN_CREDENTIAL_DEFINITIONS_FILE") or None,
            api_key=os.getenv("FLOW_ADMIN_API_KEY", ""),
            audit_dsn=os.getenv("FLOW_ADMIN_AUDIT_DSN") or None,
            log_level=os.getenv("FLOW_ADMIN_LOG_LEVEL", "WARNING").upper(),
            cors_origins=_split_csv(os.getenv("CORS_ORIGINS", "http://localhost:3000")),
            write_rate_limit=f"{int(rate)}/minute",
        )


def load_env() -> Settings:
    """Load a .env file (if any) into the environment, then read Settings."""
    load_dotenv()
    return Settings.from_env()
