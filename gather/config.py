"""Runtime configuration read from the environment."""
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Config:
    database_url: str = "sqlite:///./gather.db"
    log_format: str = "text"
    log_level: str = "INFO"
    sql_echo: bool = False

    @classmethod
    def from_env(cls) -> "Config":
        database_url = os.environ.get("DATABASE_URL", cls.database_url)

        # Render/Heroku hand out postgres:// but SQLAlchemy needs postgresql://
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)

        return cls(
            database_url=database_url,
            log_format=os.environ.get("GATHER_LOG_FORMAT", "text"),
            log_level=os.environ.get("GATHER_LOG_LEVEL", "INFO").upper(),
            sql_echo=os.environ.get("GATHER_SQL_ECHO", "").lower() in ("1", "true", "yes"),
        )
