"""Runtime settings loaded from the environment (prefix `DEFINE_`) or `.env`."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class DefineSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DEFINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # JSON object in the environment, e.g. DEFINE_RPC_URLS='{"1": "https://..."}'
    rpc_urls: dict[int, str] = {}
    rpc_timeout_s: int = 20
    rpc_max_connections: int = 16

    db_path: Path = Path("./data/ledger.duckdb")
    state_dir: Path = Path("./data/sync_state")
    positions_file: Path = Path("./data/positions.json")

    # eth_getLogs window per request
    log_block_step: int = 5_000
    min_split_span: int = 100
    sync_concurrency: int = 4
    sync_by: str = "define-cli"

    log_level: str = "INFO"


@lru_cache()
def get_settings() -> DefineSettings:
    """Get cached settings instance."""
    return DefineSettings()
