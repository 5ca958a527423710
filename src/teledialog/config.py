from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import TomlConfigSettingsSource

from .telegram.api_schemas import UPDATE_KINDS

HOME_CONFIG_PATH = Path.home() / ".teledialog" / "teledialog.toml"

MAX_ERROR_DELAY_S = 1.0


class ConfigError(RuntimeError):
    pass


class PollingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    timeout_s: int = 10
    limit: int | None = None
    allowed_updates: tuple[str, ...] | None = None
    error_delay_s: float = MAX_ERROR_DELAY_S

    @field_validator("timeout_s")
    @classmethod
    def _validate_timeout(cls, value: int) -> int:
        if value < 0:
            raise ValueError("timeout_s must be >= 0")
        return value

    @field_validator("limit")
    @classmethod
    def _validate_limit(cls, value: int | None) -> int | None:
        if value is None:
            return None
        if not 1 <= value <= 100:
            raise ValueError("limit must be between 1 and 100")
        return value

    @field_validator("allowed_updates")
    @classmethod
    def _validate_allowed_updates(
        cls, value: tuple[str, ...] | None
    ) -> tuple[str, ...] | None:
        if value is None:
            return None
        unknown = sorted(set(value) - set(UPDATE_KINDS))
        if unknown:
            raise ValueError(f"unknown update kinds: {', '.join(unknown)}")
        return value

    @field_validator("error_delay_s")
    @classmethod
    def _validate_error_delay(cls, value: float) -> float:
        if value < 0 or value > MAX_ERROR_DELAY_S:
            raise ValueError(
                f"error_delay_s must be between 0 and {MAX_ERROR_DELAY_S}"
            )
        return value


class DispatchSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    sink_queue_size: int | None = None

    @field_validator("sink_queue_size")
    @classmethod
    def _validate_queue_size(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("sink_queue_size must be >= 1")
        return value


class StorageSettings(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    path: Path | None = None


class TeledialogSettings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="forbid",
        frozen=True,
        env_prefix="TELEDIALOG__",
        env_nested_delimiter="__",
    )

    bot_token: SecretStr | None = None
    debug: bool = False
    polling: PollingSettings = Field(default_factory=PollingSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @field_validator("bot_token", mode="before")
    @classmethod
    def _validate_bot_token(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("bot_token must be a string")
        return value.strip()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )


def load_settings(path: str | Path | None = None) -> tuple[TeledialogSettings, Path]:
    cfg_path = _resolve_config_path(path)
    _ensure_config_file(cfg_path)
    return _load_settings_from_path(cfg_path), cfg_path


def load_settings_if_exists(
    path: str | Path | None = None,
) -> tuple[TeledialogSettings, Path] | None:
    cfg_path = _resolve_config_path(path)
    if cfg_path.exists():
        if not cfg_path.is_file():
            raise ConfigError(
                f"Config path {cfg_path} exists but is not a file."
            ) from None
        return _load_settings_from_path(cfg_path), cfg_path
    return None


def require_bot_token(settings: TeledialogSettings, config_path: Path) -> str:
    token = settings.bot_token
    if token is None or not token.get_secret_value():
        raise ConfigError(f"Missing bot token in {config_path}.")
    return token.get_secret_value()


def _resolve_config_path(path: str | Path | None) -> Path:
    return Path(path).expanduser() if path else HOME_CONFIG_PATH


def _ensure_config_file(cfg_path: Path) -> None:
    if cfg_path.exists() and not cfg_path.is_file():
        raise ConfigError(f"Config path {cfg_path} exists but is not a file.") from None
    if not cfg_path.exists():
        raise ConfigError(f"Missing config file {cfg_path}.") from None


def _load_settings_from_path(cfg_path: Path) -> TeledialogSettings:
    cfg = dict(TeledialogSettings.model_config)
    cfg["toml_file"] = cfg_path
    Bound = type(
        "TeledialogSettingsBound",
        (TeledialogSettings,),
        {"model_config": SettingsConfigDict(**cfg)},
    )
    try:
        return Bound()
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {cfg_path}: {exc}") from exc
    except ValueError as exc:
        raise ConfigError(f"Malformed config file {cfg_path}: {exc}") from exc
