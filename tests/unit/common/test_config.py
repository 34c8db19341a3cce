"""Tests for application settings."""

import pytest
from pydantic import ValidationError

from ehr.core.config import AuditFailurePolicy, Settings


class TestSettings:
    """Tests for Settings defaults and environment overrides."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("AUDIT_READ_FAILURE_POLICY", raising=False)
        monkeypatch.delenv("RBAC_CONFIG_PATH", raising=False)
        settings = Settings(_env_file=None)

        assert settings.audit_read_failure_policy is AuditFailurePolicy.ALERT
        assert settings.rbac_config_path is None
        assert settings.audit_failure_buffer_size == 100
        assert settings.algorithm == "HS256"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("AUDIT_READ_FAILURE_POLICY", "block")
        monkeypatch.setenv("RBAC_CONFIG_PATH", "/etc/ehr/roles.yaml")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        settings = Settings(_env_file=None)

        assert settings.audit_read_failure_policy is AuditFailurePolicy.BLOCK
        assert settings.rbac_config_path == "/etc/ehr/roles.yaml"
        assert settings.log_level == "DEBUG"

    def test_env_names_are_case_insensitive(self, monkeypatch):
        monkeypatch.setenv("audit_failure_buffer_size", "5")
        assert Settings(_env_file=None).audit_failure_buffer_size == 5

    def test_invalid_policy_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, audit_read_failure_policy="ignore")

    def test_env_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("DATABASE_URL=postgresql://ehr@db/ehr\nUNRELATED_SETTING=1\n")
        settings = Settings(_env_file=str(env_file))
        assert settings.database_url == "postgresql://ehr@db/ehr"
