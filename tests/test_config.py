"""Server Settings.from_env."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from flow_admin.config import Settings


class TestSettings:
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            s = Settings.from_env()
            assert s.flows_file is None
            assert s.api_key == ""
            assert s.audit_dsn is None
            assert s.log_level == "WARNING"
            assert s.cors_origins == ("http://localhost:3000",)
            assert s.write_rate_limit == "60/minute"

    def test_env_override(self):
        env = {
            "FLOW_ADMIN_FLOWS_FILE": "/data/flows.json",
            "FLOW_ADMIN_CREDENTIALS_FILE": "/data/creds.json",
            "FLOW_ADMIN_API_KEY": "key",
            "FLOW_ADMIN_AUDIT_DSN": "postgresql://u:p@db/audit",
            "FLOW_ADMIN_LOG_LEVEL": "info",
            "CORS_ORIGINS": "http://a, http://b ,",
            "RATE_LIMIT_WRITES_PER_MIN": "5",
        }
        with patch.dict(os.environ, env, clear=True):
            s = Settings.from_env()
            assert s.flows_file == "/data/flows.json"
            assert s.credentials_file == "/data/creds.json"
            assert s.log_level == "INFO"
            assert s.cors_origins == ("http://a", "http://b")
            assert s.write_rate_limit == "5/minute"

    def test_secrets_not_in_repr(self):
        s = Settings(api_key="key-xyz", audit_dsn="postgresql://u:pw@db/x")
        assert "key-xyz" not in repr(s)
        assert "pw@db" not in repr(s)

    def test_frozen(self):
        with pytest.raises(AttributeError):
            Settings().api_key = "y"  # type: ignore[misc]
