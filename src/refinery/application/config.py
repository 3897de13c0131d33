from pathlib import Path
from typing import Any, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

CONFIG_TOML_FILES = [
    Path.home() / ".config/refinery/config.toml",
    Path.home() / ".refinery.toml",
]


class AppConfig(BaseSettings):
    """
    Configuration model for refinery.
    Supports loading from:
    1. Environment variables (REFINERY_*)
    2. Config file (~/.config/refinery/config.toml)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="REFINERY_",
        extra="ignore",
    )

    # Paths
    config_file: Path = Field(
        default_factory=lambda: Path.home() / ".config/refinery/refinery.yaml"
    )
    memory_store_file: Path = Field(
        default_factory=lambda: Path.home() / ".config/refinery/memory_store.json"
    )

    # Record store
    backend: Literal["couchdb", "memory"] = "couchdb"
    database_server: str = "http://localhost:5984/"
    database_name: str = "refinery"
    database_user: str | None = None
    database_password: SecretStr | None = None
    request_timeout: float = 30.0

    # Study
    default_deck: str | None = None
    verbose: int = 1

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # First existing file wins
        toml_file = next((f for f in CONFIG_TOML_FILES if f.exists()), None)

        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (
            init_settings,
            env_settings,
        )

    @field_validator("config_file", "memory_store_file", mode="before")
    @classmethod
    def expand_path(cls, v: Any) -> Path:
        return Path(v).expanduser()

    @field_validator("database_server")
    @classmethod
    def ensure_trailing_slash(cls, v: str) -> str:
        return v if v.endswith("/") else v + "/"

    @property
    def database_url(self) -> str:
        return f"{self.database_server}{self.database_name}"


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/refinery/config.toml (if exists)
    3. Environment variables (REFINERY_*)
    4. cli_overrides (passed from Typer), highest priority
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
