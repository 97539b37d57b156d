from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    DATABASE_URL: str

    ENV: str
    LOG_LEVEL: str = "INFO"
    JWT_SECRET: str
    JWT_ISSUER: str

    CORS_ORIGINS: list[str] = ["http://localhost:5000", "http://127.0.0.1:5000"]

    STRIPE_API_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    STRIPE_CURRENCY: str = "usd"
    STRIPE_WEBHOOK_TOLERANCE: int = 300

    RESEND_API_KEY: str | None = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_FROM: str = "noreply@gritsync.com"
    EMAIL_FROM_NAME: str = "GritSync"

    SITE_URL: str = "https://gritsync.com"

    UPLOAD_DIR: str = "uploads"
    MAX_PROOF_BYTES: int = 10 * 1024 * 1024


settings = Settings()
