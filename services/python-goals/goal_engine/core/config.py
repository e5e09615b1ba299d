from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GOAL_ENGINE_", env_file=".env", extra="ignore")

    app_name: str = "Goal Engine"
    # "local" uses the system timezone, otherwise an IANA name like "Europe/Madrid".
    timezone: str = "local"
    default_user_id: str = "user-stub"
    log_level: str = "INFO"
    # Least recently used sessions beyond this are closed, dropping their change feeds.
    max_sessions: int = 256
    # Optional YAML file with goal definitions loaded into the in-memory store.
    seed_path: Optional[str] = None

    @field_validator("seed_path", mode="before")
    @classmethod
    def _empty_to_none(cls, v):
        if v in ("", None, "null", "None"):
            return None
        return v


settings = Settings()
