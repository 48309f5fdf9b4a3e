from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_env: str = "local"
    log_level: str = "INFO"

    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "topn_demo"
    db_user: str = "topn_user"
    db_password: str = "topn_password"

    # top-N loader
    loader_max_limit: int | None = None
    loader_max_keys: int = 10_000
    loader_default_limit: int = 3
    loader_force_fallback: bool = False
    loader_statement_timeout: float | None = None

    @property
    def database_url(self) -> str:
        # asyncpg + SQLAlchemy 2.x
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
