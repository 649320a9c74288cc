"""Configuration for the flow admin HTTP client."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Settings:
    """Immutable client settings loaded from environment variables."""

    api_key: str = field(default="", repr=False)
    api_endpoint: str = "http://127.0.0.1:1880"
    api_version: str = "v2"
    timeout: int = 30
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> Settings:
        api_key = os.getenv("FLOW_ADMIN_API_KEY", "")
        api_endpoint = os.getenv("FLOW_ADMIN_ENDPOINT", "http://127.0.0.1:1880").rstrip("/")
        timeout = int(os.getenv("FLOW_ADMIN_TIMEOUT", "30"))
        log_level = os.getenv("FLOW_ADMIN_LOG_LEVEL", "WARNING").upper()
        return cls(
            api_key=api_key,
            api_endpoint=api_endpoint,
            timeout=timeout,
            log_level=log_level,
        )

    @property
    def headers(self) -> dict[str, str]:
        h: dict[str, str] = {
            "Content-Type": "application/json",
            "Flow-API-Version": self.api_version,
        }
        if self.api_key:
            h["Authorization"] = f"Bearer {self.api_key}"
        return h
