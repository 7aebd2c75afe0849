"""Configuration from environment (no hardcoded secrets)."""

from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server settings from env."""

    model_config = SettingsConfigDict(env_prefix="READERSYNC_", extra="ignore")

    # Storage
    db_path: Path = Path("/var/lib/simplereader/app.db")
    library_path: Path = Path("/var/lib/simplereader/library")
    upload_tmp_path: Path = Path("/var/lib/simplereader/tmp")

    # Clients must send exactly this version string at login
    compat_version: str = "0.0.0"

    # Upload limit in MB (0 = no limit)
    max_file_size_mb: int = 200

    # Session lifetime in minutes
    token_timeout_minutes: int = 60

    # First user (bootstrap)
    admin_username: str = ""
    admin_initial_password: str = ""

    # CORS: comma-separated string so pydantic-settings does not try to JSON-decode it
    cors_origins: str = ""

    @property
    def cors_origins_list(self) -> List[str]:
        """CORS origins as a list (split on comma)."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @property
    def token_ttl_seconds(self) -> int:
        return self.token_timeout_minutes * 60

    # Server
    host: str = "127.0.0.1"
    port: int = 9000
    rate_limit_enabled: bool = True

    # Logging (empty log_file = stderr only; level DEBUG|INFO|WARNING|ERROR)
    log_level: str = "INFO"
    log_file: str = ""


def get_settings() -> Settings:
    """Return application settings."""
    return Settings()
