"""
Source host configuration settings.

GitHub API endpoint and fetch budgets for the run lifecycle.
Budgets bound memory use and API volume per run.

Dependencies: pydantic, pydantic_settings
System role: Source hosting client configuration
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceHostSettings(BaseSettings):
    """Source hosting (GitHub) configuration and fetch limits."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SOURCE_HOST_",
        case_sensitive=False,
        extra="ignore",
    )

    api_url: str = Field(default="https://api.github.com", description="GitHub REST API base URL")
    timeout_seconds: float = Field(default=30.0, description="Per-request timeout")
    max_retries: int = Field(default=3, description="Retries on transient API errors")

    max_file_bytes: int = Field(default=50_000, description="Per-file truncation budget")
    max_total_bytes: int = Field(default=200_000, description="Total payload budget per run")
    max_files: int = Field(default=20, description="Maximum files fetched per run")

    allowed_extensions: list[str] = Field(
        default=[".js", ".jsx", ".ts", ".tsx", ".py"],
        description="File extensions eligible for test generation",
    )
    excluded_path_parts: list[str] = Field(
        default=["node_modules", "dist", "build", "vendor", "coverage", "__tests__", "tests"],
        description="Path segments that disqualify a file",
    )

    test_branch_prefix: str = Field(default="testgen/run-", description="Prefix for generated branches")
    test_directory: str = Field(default="tests/generated", description="Where generated scripts are committed")
