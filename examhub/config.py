"""Runtime settings loaded from the environment / .env file."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="EXAMHUB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    DATABASE_URL: str = "sqlite:///./examhub.db"
    SECRET_KEY: str = "CHANGE_ME_TO_A_RANDOM_SECRET"
    SQL_ECHO: bool = False
    LOG_LEVEL: str = "INFO"


settings = Settings()
