from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SCP_", case_sensitive=False)

    env: str = "dev"
    log_level: str = "INFO"
    language: str = "de-DE"

    # Upstream access
    groq_api_key: str | None = Field(
        default=None, description="Credential for direct upstream calls"
    )
    upstream_url: str = "https://api.groq.com/openai/v1/chat/completions"
    proxy_url: str = "http://localhost:8000/api/groq/chat/completions"
    request_timeout_s: float = 30.0

    # Model selection and request defaults
    default_model: str = "llama-3.3-70b-versatile"
    vision_model: str = "llama-3.2-90b-vision-preview"
    default_temperature: float = 0.7
    default_max_tokens: int = 1000
    system_prompt_enabled: bool = True

    # Retry and throttling
    max_retries: int = 2
    backoff_base_s: float = 1.0
    min_request_interval_s: float = 1.0

    # Sanitization
    allowed_email_domains: str = "studybuddy.app,ufs.de"
    pii_mask_names: bool = False

    metrics_enabled: bool = True

    @property
    def allowed_email_domain_set(self) -> frozenset[str]:
        return frozenset(
            item.strip().lower()
            for item in self.allowed_email_domains.split(",")
            if item.strip()
        )

    @property
    def proxy_enabled(self) -> bool:
        return bool(self.proxy_url.strip())

    @property
    def language_normalized(self) -> str:
        return "en-US" if self.language.strip().lower().startswith("en") else "de-DE"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
