"""Engine configuration from environment variables, ``.env`` and Docker Swarm secrets."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings

# Fields a mounted secret may override
SECRET_FIELDS = ("supabase_url", "supabase_key")


def _read_secret(name: str) -> str | None:
    secret_path = Path("/run/secrets") / name
    if secret_path.exists():
        return secret_path.read_text().strip()
    return None


class Settings(BaseSettings):
    """Store credentials, server options and backup policy."""

    supabase_url: str = ""
    supabase_key: str = ""
    port: int = 8400
    log_level: str = "INFO"

    backups_dir: str = "backups"
    # Serialised snapshots above this many bytes are gzipped when compression is on
    backup_compress_threshold: int = Field(default=10_000, ge=0)
    backup_keep_count: int = Field(default=10, ge=0)

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        for name in SECRET_FIELDS:
            if secret := _read_secret(name):
                setattr(self, name, secret)

    @property
    def backups_path(self) -> Path:
        return Path(self.backups_dir).resolve()


@lru_cache
def get_settings() -> Settings:
    return Settings()
