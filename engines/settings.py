from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[1]


def _resolve(path_str: str) -> Path:
    path = Path(path_str)
    return path if path.is_absolute() else ROOT_DIR / path


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_path: str = "./data/optisys.db"
    seed_demo_data: bool = True
    cost_constants_path: str = "./data/config/cost_constants.xlsx"

    openai_api_key: Optional[str] = None
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o"
    llm_timeout_seconds: float = 45.0
    llm_max_tokens: int = 4096
    llm_temperature: float = 0.7

    port: int = 5000

    @property
    def resolved_database_path(self) -> Path:
        return _resolve(self.database_path)

    @property
    def resolved_cost_constants_path(self) -> Path:
        return _resolve(self.cost_constants_path)

    @property
    def llm_enabled(self) -> bool:
        return bool(self.openai_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
