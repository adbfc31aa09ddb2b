from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ═══════════════════════════════════════════════════
    # Backend (system of record, GraphQL)
    # ═══════════════════════════════════════════════════
    BACKEND_URL: str = "https://meetcode-backend.onrender.com/graphql"
    BACKEND_TIMEOUT_SECONDS: float = 10.0

    # ═══════════════════════════════════════════════════
    # FastAPI Application Settings
    # ═══════════════════════════════════════════════════
    APP_NAME: str = "MeetCode Battle Server"
    VERSION: str = "0.1.0"
    ENV: str = "development"  # "development" | "production"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # ═══════════════════════════════════════════════════
    # Server Configuration
    # ═══════════════════════════════════════════════════
    HOST: str = "0.0.0.0"
    PORT: int = 4000

    # ═══════════════════════════════════════════════════
    # Battle Rules & Timers (milliseconds)
    # ═══════════════════════════════════════════════════
    CHALLENGE_DURATION_MS: int = 15 * 60 * 1000
    TIMER_TICK_MS: int = 1000
    INACTIVITY_TIMEOUT_MS: int = 3 * 60 * 1000
    DISCONNECT_GRACE_MS: int = 5000
    RESULT_RETENTION_MS: int = 30000
    FULL_PASS_THRESHOLD: int = 12

    # ═══════════════════════════════════════════════════
    # CORS Configuration
    # ═══════════════════════════════════════════════════
    CORS_ORIGINS: list[str] = ["*"]
    CORS_CREDENTIALS: bool = True
    CORS_METHODS: list[str] = ["*"]
    CORS_HEADERS: list[str] = ["*"]

    class Config:
        env_file = ".env"
        extra = "ignore"


_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Return the process-wide Settings instance, created on first use.

    Usable as a FastAPI dependency:

    @app.get("/info")
    def info(settings: Settings = Depends(get_settings)):
        return {"env": settings.ENV}
    """
    global _settings
    if not _settings:
        _settings = Settings()
    return _settings
