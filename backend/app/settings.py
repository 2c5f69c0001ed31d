from __future__ import annotations

import logging
import os
from functools import lru_cache

from pydantic_settings import BaseSettings
from pydantic import Field

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = Field(default="sqlite+aiosqlite:///./euchre.db", alias="DATABASE_URL")
    origin: str = Field(default="", alias="ORIGIN")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    sql_echo: bool = Field(default=False, alias="SQL_ECHO")

    class Config:
        env_file = ".env"
        extra = "ignore"

    def allowed_origins(self) -> list[str]:
        """
        Splits ORIGIN by commas, dropping blanks.
        Example: "https://euchre.example, https://www.euchre.example"
        """
        return ["http://localhost:5173"] + [x.strip() for x in self.origin.split(",") if x.strip()]

    def masked_database_url(self) -> str:
        scheme, sep, rest = self.database_url.partition("://")
        if not sep or "@" not in rest:
            return self.database_url
        credentials, _, host = rest.rpartition("@")
        user = credentials.split(":", 1)[0]
        return f"{scheme}://{user}:***@{host}"

    def log_status(self) -> None:
        env_name = os.getenv("ENV", "unknown")
        logger.info(
            "Settings: database=%s, origins=%s, env=%s",
            self.masked_database_url(),
            self.allowed_origins(),
            env_name,
        )


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
