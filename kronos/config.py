import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

_CONFIG_PATH = os.getenv("KRONOS_CONFIG", "kronos.toml")
_ENV_PATH = os.getenv("KRONOS_ENV", ".env")


class HttpSettings(BaseModel):
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 3000
    token: Optional[str] = None  # bearer token required on /jobs when set


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="KRONOS_",
        env_nested_delimiter="__",
        toml_file=_CONFIG_PATH,
        env_file=_ENV_PATH,
        extra="ignore",
    )

    name: str = "Kronos"
    crontab_path: Path = Field(default=Path("kronos.crontab"))
    jobs_dir: Optional[Path] = None
    logs_dir: Optional[Path] = None
    log_level: str = "INFO"
    watch_debounce_ms: int = 300
    http: HttpSettings = Field(default_factory=HttpSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Source order: init args > OS env > .env > kronos.toml > secrets
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


settings = Settings()
