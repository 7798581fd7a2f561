from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    DATABASE_URL: str
    LLM_GATEWAY_KEY: Optional[str] = None
    LLM_GATEWAY_URL: str = "https://ai.gateway.lovable.dev/v1/chat/completions"
    LLM_MODEL: str = "google/gemini-2.5-flash"
    LLM_TEMPERATURE: float = 0.3
    OPEN_FOOD_FACTS_URL: str = "https://world.openfoodfacts.org"
    SERPAI_KEY: Optional[str] = None
    LOCATION: str = "United States"

    HTTP_TIMEOUT_SECONDS: float = 30.0
    CERT_PROBE_TIMEOUT_SECONDS: float = 5.0
    USER_AGENT: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

    RATE_LIMIT_WINDOW_MS: int = 60000
    RATE_LIMIT_SWEEP_INTERVAL_MS: int = 5 * 60 * 1000
    RATE_LIMIT_PRODUCT_FETCH: int = 30
    RATE_LIMIT_CERTIFICATION_CHECK: int = 15
    RATE_LIMIT_AI_ANALYSIS: int = 10
    RATE_LIMIT_NAME_SEARCH: int = 20

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

settings = Settings()
