"""
Tool server configuration settings.

Connection and retry parameters for the external tool (MCP) server.

Dependencies: pydantic, pydantic_settings
System role: External tool client configuration
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ToolSettings(BaseSettings):
    """MCP tool server configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="MCP_",
        case_sensitive=False,
        extra="ignore",
    )

    server_url: str = Field(default="http://localhost:3001", description="MCP server base URL")
    timeout_seconds: float = Field(default=30.0, description="Per-request timeout")
    health_timeout_seconds: float = Field(default=5.0, description="Health check timeout")
    max_retries: int = Field(default=3, description="Retries on transient tool errors")
    retry_delay_seconds: float = Field(default=1.0, description="Base delay for exponential backoff")
