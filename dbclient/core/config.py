from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    # Default target for DbClient.from_settings()
    DB_URL: str | None = None
    DB_USERNAME: str | None = None
    DB_PASSWORD: str | None = None

    # Seconds; passed to the driver at connect time
    DB_CONNECT_TIMEOUT: int = 10
    # Seconds; applied as a session setting right after connect (None = driver default)
    DB_STATEMENT_TIMEOUT: float | None = None


settings = Settings()  # type: ignore
