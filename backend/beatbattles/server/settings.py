"""Room server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING, Self

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from beatbattles.rooms.models import DEFAULT_CAPACITY
from shared.validators import StringListEnvSettingsSource, parse_string_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class GameServerSettings(BaseSettings):
    model_config = {"env_prefix": "BEATBATTLES_"}

    log_dir: str = Field(default="backend/logs/beatbattles", min_length=1)
    cors_origins: list[str] = ["http://localhost:3000"]
    max_rooms: int = Field(default=1000, ge=1)
    default_room_capacity: int = Field(default=DEFAULT_CAPACITY, ge=2)
    max_room_capacity: int = Field(default=32, ge=2)
    reap_interval_seconds: float = Field(default=30, ge=0)  # 0 disables the idle reaper
    disconnect_grace_seconds: float = Field(default=60, ge=0)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v)

    @model_validator(mode="after")
    def check_capacity_bounds(self) -> Self:
        if self.default_room_capacity > self.max_room_capacity:
            msg = (
                f"default_room_capacity ({self.default_room_capacity}) must not exceed "
                f"max_room_capacity ({self.max_room_capacity})"
            )
            raise ValueError(msg)
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, StringListEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings
