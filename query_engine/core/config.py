from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    APP_ENV: str = "local"
    APP_NAME: str = "adaptive-query-engine"

    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    DATABASE_URL: str
    SQL_ECHO: bool = False

    MAX_PAGE_SIZE: int = 1000
    DEFAULT_PAGE_SIZE: int = 20
    QUERY_TIMEOUT_SECONDS: float = 10.0
    CURSOR_SECRET: str = "change_me_cursor"
    # True: any violation fails the request with 422.
    # False: whitelist misses are dropped from the query and logged.
    STRICT_FIELD_VALIDATION: bool = True
    DEFAULT_RESPONSE_FORMAT: str = "standard"

    @field_validator("CURSOR_SECRET")
    @classmethod
    def cursor_secret_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("CURSOR_SECRET must not be blank")
        return value

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

settings = Settings()
