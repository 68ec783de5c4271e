"""Application configuration."""

import base64
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    # Database
    database_url: str = "postgresql://localhost:5432/changereel"

    # GitHub
    github_token: str = ""  # Fallback when no App credentials are configured

    # GitHub App (recommended)
    github_app_id: str = ""
    github_app_private_key_path: str = ""
    github_app_private_key_base64: Optional[str] = None
    github_app_installation_id: str = ""

    # LLM Provider Selection
    llm_provider: str = "openai"  # Options: openai, anthropic
    llm_max_tokens: int = 1500

    # OpenAI
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_requests_per_minute: Optional[int] = None
    openai_tokens_per_minute: Optional[int] = None

    # Anthropic (Claude)
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-5-20250929"

    # Email delivery (Resend)
    resend_api_key: str = ""
    resend_base_url: str = "https://api.resend.com"
    email_from: str = "Change Reel <noreply@changereel.app>"

    # Job processing
    job_max_concurrent: int = 5
    job_poll_interval_ms: int = 2000
    job_retry_delay_ms: int = 1000
    job_max_retry_delay_ms: int = 30000
    job_retry_jitter_ms: int = 100
    job_timeout_ms: int = 300000
    job_default_max_attempts: int = 3
    job_auth_max_attempts: int = 2
    job_maintenance_interval_ms: int = 300000
    # "production", "development" or "" to use the knobs above
    job_config_preset: str = ""
    # Worker health endpoint; disabled when unset
    worker_health_port: Optional[int] = None

    # GitHub response cache
    cache_default_ttl_seconds: float = 300.0
    cache_max_entries: int = 1000
    cache_max_memory_bytes: int = 50 * 1024 * 1024
    cache_cleanup_interval_seconds: float = 60.0

    # App Settings
    log_level: str = "INFO"
    environment: str = "development"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def get_llm_config(self) -> dict:
        """
        Get LLM configuration based on selected provider.

        Returns:
            Dictionary with provider, model, and api_key

        Raises:
            ValueError: If provider is invalid or API key is missing
        """
        provider = self.llm_provider.lower()

        if provider == "openai":
            if not self.openai_api_key:
                raise ValueError("OPENAI_API_KEY is required when LLM_PROVIDER=openai")
            return {
                "provider": "openai",
                "model": self.openai_model,
                "api_key": self.openai_api_key,
            }
        elif provider == "anthropic":
            if not self.anthropic_api_key:
                raise ValueError("ANTHROPIC_API_KEY is required when LLM_PROVIDER=anthropic")
            return {
                "provider": "anthropic",
                "model": self.anthropic_model,
                "api_key": self.anthropic_api_key,
            }
        else:
            raise ValueError(
                f"Invalid LLM_PROVIDER: {provider}. Must be one of: openai, anthropic"
            )

    def get_github_app_private_key(self) -> Optional[str]:
        """
        Get GitHub App private key, handling both file and base64 env var.

        Returns:
            Private key content, or None when no App key is configured

        Raises:
            ValueError: If the base64 key cannot be decoded
            FileNotFoundError: If the configured key file does not exist
        """
        if self.github_app_private_key_base64:
            try:
                return base64.b64decode(self.github_app_private_key_base64).decode("utf-8")
            except Exception as e:
                raise ValueError(f"Failed to decode base64 private key: {e}") from e

        if self.github_app_private_key_path:
            key_path = Path(self.github_app_private_key_path)
            # Relative paths are resolved against the project root
            if not key_path.is_absolute():
                project_root = Path(__file__).parent.parent.parent
                key_path = project_root / key_path

            if not key_path.exists():
                raise FileNotFoundError(
                    f"GitHub App private key not found: {key_path}. "
                    f"Check GITHUB_APP_PRIVATE_KEY_PATH setting."
                )

            with open(key_path, "r", encoding="utf-8") as f:
                return f.read()

        return None

    @property
    def github_app_configured(self) -> bool:
        return bool(
            self.github_app_id
            and self.github_app_installation_id
            and (self.github_app_private_key_path or self.github_app_private_key_base64)
        )


settings = Settings()
