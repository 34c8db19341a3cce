from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class AuditFailurePolicy(str, Enum):
    """What a read does when its audit entry cannot be persisted."""

    ALERT = "alert"   # report on the failure channel, let the read proceed
    BLOCK = "block"   # fail closed, same as mutations


class Settings(BaseSettings):
    # App
    app_name: str = "MentalSpace EHR"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./ehr.db"

    # Security (token verification only; issuance is handled elsewhere)
    secret_key: str = "dev-secret-key-change-in-production"
    algorithm: str = "HS256"

    # RBAC: YAML role table; built-in table when unset
    rbac_config_path: Optional[str] = None

    # Audit
    audit_read_failure_policy: AuditFailurePolicy = AuditFailurePolicy.ALERT
    audit_failure_buffer_size: int = 100

    # Logging
    log_level: str = "INFO"
    log_dir: str = "/var/log/ehr"
    log_to_file: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore"  # Allow extra env vars without raising validation errors
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
