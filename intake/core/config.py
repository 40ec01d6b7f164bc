from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_ENV: str = "dev"
    API_VERSION: str = "v1.4.0"
    DATABASE_URL: str = "sqlite:///./intake.db"

    # Empty key means the language model is not configured; every model call
    # then degrades to its local fallback.
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_EXTRACTION_MODEL: str = "gpt-4o-mini"
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_TIMEOUT_SECONDS: int = 25

    CHAT_TEMPERATURE: float = 0.4
    EXTRACTION_TEMPERATURE: float = 0.1
    CHAT_MAX_TOKENS: int = 500

    # Sliding window of messages sent to the model on each turn.
    CONTEXT_WINDOW_MESSAGES: int = 20

    LOG_LEVEL: str = "INFO"

    ALLOW_DEV_DEBUG_META: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
