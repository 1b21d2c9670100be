"""
LLM configuration settings.

Provider selection and model parameters for test generation.
Gemini is the development default; production runs on Bedrock.

Dependencies: pydantic, pydantic_settings
System role: Generation client configuration
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """LLM provider and resilience configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LLM_",
        case_sensitive=False,
        extra="ignore",
    )

    provider: str = Field(
        default="gemini",
        description="LLM provider: 'gemini', 'bedrock', or 'mock'",
    )

    gemini_model: str = Field(default="gemini-2.5-flash", description="Google Gemini model name")
    gemini_api_key: str | None = Field(default=None, description="Google AI Studio API key")

    bedrock_model_id: str = Field(
        default="anthropic.claude-3-5-sonnet-20240620-v1:0",
        description="Bedrock model identifier",
    )
    bedrock_region: str = Field(default="us-east-1", description="AWS region for Bedrock")

    temperature: float = Field(default=0.3, description="Default sampling temperature")
    max_output_tokens: int = Field(default=4096, description="Maximum tokens per completion")

    # Resilience
    max_attempts: int = Field(default=3, description="Generation attempts before fallback")
    base_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout of the first attempt; attempt N waits N times this",
    )
    probe_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for the connectivity probe",
    )
