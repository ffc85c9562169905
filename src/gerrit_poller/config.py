"""
Configuration management for the Gerrit poller.

This module handles environment variables and settings validation using
Pydantic Settings, plus parsing of the ``host=repo-a,repo-b`` projects flag
form into the instance map the client is configured with.
"""

from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import InstanceProjects, ProjectFilter


def parse_projects_flag(
    value: str, projects: dict[str, list[str]] | None = None
) -> dict[str, list[str]]:
    """
    Parse ``host=repo-a,repo-b`` entries into a host -> repos map.

    Several entries may be given separated by whitespace. Entries are added to
    ``projects`` when it is passed in.

    Raises:
        ValueError: If an entry is malformed or repeats a host
    """
    projects = {} if projects is None else projects
    for entry in value.split():
        host, sep, repos = entry.partition("=")
        if not sep or not host:
            raise ValueError(f"{entry} not in the form of host=repo-a,repo-b,etc")
        if host in projects:
            raise ValueError(f"duplicate host: {host}")
        projects[host] = [repo for repo in repos.split(",") if repo]
    return projects


def format_projects_flag(projects: dict[str, list[str]]) -> str:
    """Render a host -> repos map back into flag form."""
    return " ".join(f"{host}={','.join(repos)}" for host, repos in projects.items())


def projects_flag_to_config(projects: dict[str, list[str]]) -> InstanceProjects:
    """Convert flag-style projects to the client's map, with no branch filters."""
    result: InstanceProjects = {}
    for host, repos in projects.items():
        result[host] = {}
        for repo in repos:
            result[host][repo] = None
    return result


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Gerrit configuration
    gerrit_projects: str = Field(
        default="",
        description="Watched projects as space-separated host=repo-a,repo-b entries",
    )
    gerrit_branch_filters: dict[str, dict[str, ProjectFilter]] = Field(
        default_factory=dict,
        description="Optional host -> project -> branch filter map (JSON)",
    )
    cookiefile_path: str = Field(
        default="", description="Path to a Gerrit cookie file (takes precedence)"
    )
    token_path: str = Field(default="", description="Path to a Gerrit token file")

    # Polling configuration
    rate_limit: int = Field(default=5, description="Changes requested per page")
    poll_interval_seconds: float = Field(
        default=30.0, description="Delay between polls of all instances"
    )
    auth_refresh_interval_seconds: float = Field(
        default=60.0, description="Credential re-read interval in seconds"
    )
    config_reload_interval_seconds: float = Field(
        default=1.0, description="Project configuration reload interval in seconds"
    )
    request_timeout_seconds: float = Field(
        default=30.0, description="Per-request timeout for Gerrit API calls"
    )

    # Logging configuration
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="json", description="Log format")

    @field_validator("gerrit_projects")
    @classmethod
    def validate_gerrit_projects(cls, v: str) -> str:
        """Validate the projects flag form."""
        parse_projects_flag(v)
        return v

    @field_validator("rate_limit")
    @classmethod
    def validate_rate_limit(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"rate_limit must be positive, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in {"json", "console"}:
            raise ValueError(f"Invalid log format: {v}")
        return v

    @property
    def instance_projects(self) -> InstanceProjects:
        """Get the configured instance -> project -> filter map."""
        instances = projects_flag_to_config(parse_projects_flag(self.gerrit_projects))
        for host, filters in self.gerrit_branch_filters.items():
            for project, project_filter in filters.items():
                if project in instances.get(host, {}):
                    instances[host][project] = project_filter
        return instances


# Global settings instance - initialized lazily to avoid import-time errors
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance, creating it if necessary."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


def __getattr__(name: str) -> Any:
    """Allow module-level access to settings attributes."""
    if name == "settings":
        return get_settings()
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
