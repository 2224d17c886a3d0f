"""Runtime configuration read from the environment (``QUIZPORTAL_*``)."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="QUIZPORTAL_", env_file=".env", extra="ignore")

    database_url: str = "sqlite:///./quizportal.db"
    # echo=False to avoid noisy logs; toggle for debugging
    sql_echo: bool = False
    session_secret: str = "CHANGE_ME_TO_A_RANDOM_SECRET"
    log_level: str = "INFO"

    # Used when a teacher publishes without giving a passing percentage
    default_passing_percentage: float = 50.0


settings = Settings()
