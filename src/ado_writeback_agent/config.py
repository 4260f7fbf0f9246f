"""
Configuration for Azure DevOps Write-Back Agent.
"""
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class AdoWriteBackSettings(BaseSettings):
    """Settings loaded from ADO_* environment variables (and .env)."""

    # Azure DevOps target
    organization: Optional[str] = None
    project: Optional[str] = None
    team: Optional[str] = None
    # Support both ADO_ACCESS_TOKEN and ADO_PAT (common convention)
    access_token: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("ADO_ACCESS_TOKEN", "ADO_PAT", "access_token")
    )

    # REST API
    base_url: str = "https://dev.azure.com"
    api_version: str = "7.0"
    api_timeout: int = 90

    # Audit trail
    audit_log_dir: str = "audit_logs"

    # HTTP surface (comma-separated)
    cors_origins: str = "http://localhost:5173,http://localhost:3000,http://127.0.0.1:5173"

    class Config:
        env_prefix = "ADO_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True
        extra = "ignore"  # Ignore extra environment variables that aren't defined in the model

    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


def get_settings() -> AdoWriteBackSettings:
    """Read settings from the environment at call time (not import time)."""
    return AdoWriteBackSettings()
