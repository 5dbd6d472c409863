from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    data_dir: Path = Path("./data")
    db_url: str = "sqlite:///./data/trove.db"
    # Full-text index file; defaults to <data_dir>/search.sqlite
    search_index_path: Path | None = None
    search_result_limit: int = 100
    search_snippet_tokens: int = 12  # words of context around a match
    # Rebuild the index from the item store on every startup, not only
    # when the index schema was recreated
    reindex_on_startup: bool = False
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_search_limits(self) -> Settings:
        if self.search_result_limit <= 0:
            raise ValueError(
                f"SEARCH_RESULT_LIMIT must be > 0, got {self.search_result_limit}"
            )
        if self.search_snippet_tokens <= 0:
            raise ValueError(
                f"SEARCH_SNIPPET_TOKENS must be > 0, got {self.search_snippet_tokens}"
            )
        self.log_level = self.log_level.strip().upper() or "INFO"
        return self

    @property
    def index_path(self) -> Path:
        if self.search_index_path is not None:
            return self.search_index_path
        return self.data_dir / "search.sqlite"


@lru_cache
def get_settings() -> Settings:
    return Settings()
