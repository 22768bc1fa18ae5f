"""
Configuration for the Ark client.
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from arkcore.models import NetworkType


class RoundConfig(BaseModel):
    """Per-round settings handed to the settlement orchestrator."""

    event_timeout_sec: float = Field(
        default=120.0, gt=0, description="Maximum wait for each round event"
    )
    drop_dust_change: bool = Field(
        default=False, description="Give up sub-dust change instead of adding inputs"
    )


class Settings(BaseSettings):
    """
    Client settings.

    Read from keyword arguments, then ``ARK_*`` environment variables, then
    ``.env``, then ``ark.config.toml`` in the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="ARK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        toml_file="ark.config.toml",
        extra="ignore",
    )

    server_url: str = "http://127.0.0.1:7070"
    esplora_url: str = "http://127.0.0.1:3000"
    # Expected coordinator network; None accepts whatever it reports
    network: NetworkType | None = None

    event_timeout_sec: float = Field(default=120.0, gt=0)
    rpc_timeout_sec: float = Field(default=30.0, gt=0)
    drop_dust_change: bool = False

    log_level: str = "INFO"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
        )

    def round_config(self) -> RoundConfig:
        return RoundConfig(
            event_timeout_sec=self.event_timeout_sec,
            drop_dust_change=self.drop_dust_change,
        )


def get_settings(**overrides: object) -> Settings:
    return Settings(**overrides)
