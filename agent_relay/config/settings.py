"""
Application Settings
===================

Main application settings and environment configuration using Pydantic Settings.
Supports development, testing, and production environments.
"""

from typing import Optional, List, Union
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json
from pathlib import Path


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    # Application Configuration
    app_name: str = Field(default="Agent Relay", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(
        default="development", description="Environment: development, testing, production"
    )
    debug: bool = Field(default=True, description="Debug mode")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # Redis Configuration
    redis_url: str = Field(
        default="redis://localhost:6379/0", description="Redis connection URL"
    )
    redis_max_connections: int = Field(default=100, description="Redis connection pool size")

    # Session Store Configuration
    session_store_backend: str = Field(
        default="memory", description="Conversation store backend: memory or redis"
    )
    session_key_prefix: str = Field(
        default="agent_relay:session", description="Redis key prefix for conversation records"
    )

    # Agent API Configuration
    agent_base_url: str = Field(
        default="https://agent-prod.studio.lyzr.ai", description="Agent inference API base URL"
    )
    agent_api_key: Optional[str] = Field(default=None, description="Agent API credential")
    tutor_agent_id: Optional[str] = Field(default=None, description="Agent used for tutor chat")
    sourcing_agent_id: Optional[str] = Field(
        default=None, description="Agent used for candidate-sourcing chat"
    )
    agent_request_timeout: int = Field(
        default=300, description="Total agent request timeout in seconds"
    )
    agent_connect_timeout: int = Field(default=10, description="Agent connect timeout in seconds")

    # Security Configuration
    allowed_hosts: List[str] = Field(default=["*"], description="Allowed hosts for CORS")
    api_auth_token: Optional[str] = Field(
        default=None, description="Shared token for detached chat and stream endpoints"
    )
    skip_token_validation: bool = Field(
        default=False, description="Skip token validation in development"
    )

    # SSE Configuration
    sse_idle_timeout_seconds: float = Field(
        default=300.0, description="Close SSE connections idle for this many seconds"
    )
    detached_start_delay_seconds: float = Field(
        default=0.1, description="Delay before a detached agent call starts publishing"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: Optional[bool] = Field(
        default=None, description="Render JSON lines; defaults to on in production"
    )
    log_to_file: bool = Field(default=False, description="Also write rotating log files")
    log_dir: Path = Field(default=Path("./logs"), description="Directory for log files")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed = {"development", "testing", "production"}
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("session_store_backend")
    @classmethod
    def validate_session_store_backend(cls, v: str) -> str:
        """Validate session store backend."""
        allowed = {"memory", "redis"}
        if v.lower() not in allowed:
            raise ValueError(f"Session store backend must be one of: {allowed}")
        return v.lower()

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def parse_allowed_hosts(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse allowed hosts from string or list."""
        if isinstance(v, str):
            # Handle JSON-like string: ["*"] or ["host1", "host2"]
            v = v.strip()
            if v.startswith("[") and v.endswith("]"):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            # Handle comma-separated string: "*" or "host1,host2"
            return [host.strip() for host in v.split(",") if host.strip()]
        return v

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, env_prefix="AGENT_RELAY_"
    )


# Global settings instance - will be initialized when needed
settings = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global settings
    if settings is None:
        settings = Settings()
    return settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global settings
    settings = Settings()
    return settings
