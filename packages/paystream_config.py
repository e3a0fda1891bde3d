"""
PayStream backend configuration.

Manages storage locations, logging, audit dispatch and log retention settings
with environment variable overrides.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PayStreamConfig(BaseSettings):
    """
    PayStream configuration from environment variables.

    Environment Variables:
        PAYSTREAM_STREAMS_DB_PATH: SQLite file for stream records (default: data/streams.db)
        PAYSTREAM_AUDIT_DB_PATH: SQLite file for audit records (default: data/audit.db)
        PAYSTREAM_EMPLOYEES_DB_PATH: SQLite file for the employee directory (default: data/employees.db)
        PAYSTREAM_ADMIN_ADDRESS: Wallet allowed to read and clean up logs
        PAYSTREAM_LOG_LEVEL: Log level (default: INFO)
        PAYSTREAM_LOG_JSON: Render logs as JSON (default: True)
        PAYSTREAM_LOG_FILE: Optional log file path
        PAYSTREAM_AUDIT_ASYNC: Dispatch audit records in background threads (default: True)
        PAYSTREAM_AUDIT_WORKERS: Background audit worker threads (default: 2)
        PAYSTREAM_RETENTION_DAYS: Days of audit records kept by the sweep (default: 90)
        PAYSTREAM_RETENTION_SWEEP_ENABLED: Run the retention sweep on a schedule (default: False)
        PAYSTREAM_RETENTION_SWEEP_CRON: Crontab for the sweep (default: 0 3 * * *)
        PAYSTREAM_TIMEZONE: Scheduler timezone (default: UTC)

    Usage:
        config = PayStreamConfig()
        print(f"Streams stored in {config.streams_db_path}")
    """

    model_config = SettingsConfigDict(
        env_prefix="PAYSTREAM_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Storage
    streams_db_path: str = Field(default="data/streams.db", description="Stream SQLite database")
    audit_db_path: str = Field(default="data/audit.db", description="Audit SQLite database")
    employees_db_path: str = Field(default="data/employees.db", description="Employee directory SQLite database")

    # Access control
    admin_address: str | None = Field(default=None, description="Admin wallet for log endpoints")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_json: bool = Field(default=True, description="JSON log rendering")
    log_file: str | None = Field(default=None, description="Optional log file")

    # Audit dispatch
    audit_async: bool = Field(default=True, description="Background audit dispatch")
    audit_workers: int = Field(default=2, ge=1, le=16, description="Audit worker threads")

    # Retention
    retention_days: int = Field(default=90, ge=1, le=365, description="Days of audit records to keep")
    retention_sweep_enabled: bool = Field(default=False, description="Scheduled retention sweep")
    retention_sweep_cron: str = Field(default="0 3 * * *", description="Retention sweep crontab")
    timezone: str = Field(default="UTC", description="Scheduler timezone")

    @field_validator("admin_address")
    @classmethod
    def normalize_admin_address(cls, v: str | None) -> str | None:
        """Store the admin wallet lowercased; blank means unset."""
        if v is None or not v.strip():
            return None
        return v.strip().lower()

    @property
    def admin_configured(self) -> bool:
        """Check if log endpoints can be served."""
        return self.admin_address is not None

    def to_dict(self) -> dict:
        """Export config as dictionary (safe for logging)."""
        return {
            "streams_db_path": self.streams_db_path,
            "audit_db_path": self.audit_db_path,
            "employees_db_path": self.employees_db_path,
            "admin_configured": self.admin_configured,
            "log_level": self.log_level,
            "log_json": self.log_json,
            "audit_async": self.audit_async,
            "audit_workers": self.audit_workers,
            "retention_days": self.retention_days,
            "retention_sweep_enabled": self.retention_sweep_enabled,
            "retention_sweep_cron": self.retention_sweep_cron,
        }


# Global config instance (singleton pattern)
_config_instance: PayStreamConfig | None = None


def get_paystream_config(force_reload: bool = False) -> PayStreamConfig:
    """
    Get global PayStream configuration singleton.

    Args:
        force_reload: Force reload from environment (useful for testing)

    Returns:
        PayStreamConfig instance
    """
    global _config_instance

    if _config_instance is None or force_reload:
        _config_instance = PayStreamConfig()

    return _config_instance


def reset_paystream_config():
    """Reset global config instance (for testing)."""
    global _config_instance
    _config_instance = None
