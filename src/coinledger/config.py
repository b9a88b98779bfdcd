"""
Configuration management using pydantic-settings.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="COINLEDGER_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    network: Literal["mainnet", "testnet", "signet", "regtest"] = "mainnet"

    mnemonic: str | None = None
    passphrase: str = ""

    look_ahead: int = Field(default=10, ge=1, description="Unused keys watched per account")

    log_level: str = "INFO"


def get_settings() -> LedgerSettings:
    return LedgerSettings()
