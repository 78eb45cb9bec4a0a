"""Core configuration for the SSA engine."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SSA_",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # ── App ──────────────────────────────────────────────────────────────
    app_name: str = "SSA Engine"
    app_env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    debug: bool = False

    # ── Network ──────────────────────────────────────────────────────────
    network: Literal["mainnet", "testnet"] = "mainnet"
    rpc_url: str = Field(
        default="https://rpc.supra.com",
        validation_alias=AliasChoices("SSA_RPC_URL", "SUPRA_RPC_URL"),
    )
    rpc_url_secondary: str = ""  # Independent second endpoint, empty = disabled
    indexer_graphql_url: str = Field(
        default="https://suprascan.io/api/graphql",
        validation_alias=AliasChoices("SSA_INDEXER_GRAPHQL_URL", "SUPRASCAN_GRAPHQL_URL"),
    )
    indexer_enabled: bool = True

    # ── RPC client ───────────────────────────────────────────────────────
    rpc_timeout_seconds: float = 10.0
    rpc_retries: int = 2
    rpc_retry_delay_seconds: float = 0.5
    ping_timeout_seconds: float = 20.0
    ping_retries: int = 1

    # ── Behavior sampling ────────────────────────────────────────────────
    tx_sample_enabled: bool = True
    tx_sample_limit: int = 20

    # ── Storage ──────────────────────────────────────────────────────────
    state_dir: str = "state"
    tmp_dir: str = "tmp"
    registry_path: str = "data/monitor_registry.json"

    # ── Monitor ──────────────────────────────────────────────────────────
    monitor_max_targets_per_run: int = 50
    monitor_max_deep_scans_per_run: int = 3
    monitor_deep_timeout_seconds: float = 60.0

    # ── Rules ────────────────────────────────────────────────────────────
    safe_exception_overrides: str = Field(
        default="",
        validation_alias=AliasChoices("SSA_SAFE_EXCEPTION_OVERRIDES", "OVERRIDE_SAFE_EXCEPTIONS"),
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
