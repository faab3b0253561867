from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):

    db_user: str = Field(default="root", alias="DB_USER")
    db_password: str = Field(default="", alias="DB_PASSWORD")
    db_host: str = Field(default="localhost", alias="DB_HOST")
    db_port: int = Field(default=3306, alias="DB_PORT")
    db_name: str = Field(default="movie_db", alias="DB_NAME")

    # Full SQLAlchemy URL, wins over the individual parts (e.g. sqlite for local runs)
    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,  # Allows us to still use db_user=xxx in Python code
    )

    @property
    def url(self) -> str:

        if self.database_url:
            return self.database_url

        url = f"mysql+pymysql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}?charset=utf8mb4"

        return url


class CatalogApiSettings(BaseSettings):
    """
    Loads the upstream catalog API credentials and paging policy from .env.
    """

    api_token: str = Field(alias="CATALOG_API_TOKEN")
    api_url: str = Field(
        default="https://catalog-sync-api.rstprgapipt.com/v1/contents",
        alias="CATALOG_API_URL",
    )
    page_size: int = Field(default=100, alias="CATALOG_PAGE_SIZE")
    timeout_seconds: float = Field(default=30.0, alias="CATALOG_TIMEOUT_SECONDS")
    page_delay_seconds: float = Field(default=2.0, alias="CATALOG_PAGE_DELAY_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )


class AppSettings(BaseSettings):
    """
    Settings for the HTTP API process.
    """

    app_env: str = Field(default="production", alias="APP_ENV")
    cors_origins: list[str] = Field(default_factory=lambda: ["*"], alias="CORS_ORIGINS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() == "development"
