from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "TradeBinder"
    debug: bool = False

    database_url: str = "postgresql+asyncpg://localhost:5432/tradebinder"

    # Unjoined sessions lapse to EXPIRED after this many hours
    session_ttl_hours: int = 24

    session_code_length: int = 6

    max_message_length: int = 1000
    max_messages_page: int = 100


settings = Settings()


# =============================================================================
# SESSION CODES
# =============================================================================

# No 0/O, 1/I: codes are read aloud and typed from screens
SESSION_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

# Attempts at drawing an unused code before giving up
MAX_SESSION_CODE_ATTEMPTS = 10
