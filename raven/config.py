from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_DIR_NAME = "raven-installer"
APP_VERSION = "0.1.0"

DEFAULT_MODLINKS_URL = "https://github.com/dd-modding/modlinks/archive/refs/heads/main.zip"
DEFAULT_HTTP_TIMEOUT = 60.0

USER_CONFIG_DIR = Path.home() / ".config" / APP_DIR_NAME
USER_CONFIG_FILENAME = "config.json"
USER_CONFIG_PATH = USER_CONFIG_DIR / USER_CONFIG_FILENAME


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


def default_cache_dir(platform: str = os.name) -> Path:
    """Per-user cache root: %LOCALAPPDATA% on Windows, XDG elsewhere."""

    if platform == "nt":
        local = os.environ.get("LOCALAPPDATA")
        if local:
            return Path(local)
    xdg = os.environ.get("XDG_CACHE_HOME")
    if xdg:
        return Path(xdg)
    return Path.home() / ".cache"


class UserConfig(BaseModel):
    game_location: Optional[str] = None


class EnvSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RAVEN_", extra="ignore")

    game_location: Optional[str] = None
    cache_dir: Optional[Path] = None
    modlinks_url: Optional[str] = None
    api_user_agent: Optional[str] = None
    http_timeout: Optional[float] = None


class RavenConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    game_location: Optional[Path] = None
    cache_dir: Path = Field(default_factory=default_cache_dir)
    modlinks_url: str = DEFAULT_MODLINKS_URL
    api_user_agent: str = f"{APP_DIR_NAME}/{APP_VERSION}"
    http_timeout: float = DEFAULT_HTTP_TIMEOUT


def load_user_config(path: Path | None = None) -> UserConfig:
    path = path or USER_CONFIG_PATH
    if not path.exists():
        return UserConfig()
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as exc:  # pragma: no cover - config errors are user-facing
        raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
    return UserConfig(**data)


def save_user_config(cfg: UserConfig, path: Path | None = None) -> Path:
    path = path or USER_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(cfg.model_dump_json(indent=2))
    return path


def load_config(user_config_path: Path | None = None) -> RavenConfig:
    """Load configuration from env + the user config file."""

    user_cfg = load_user_config(user_config_path)
    env_settings = EnvSettings()

    game_location = (env_settings.game_location or user_cfg.game_location or "").strip()

    defaults = RavenConfig()
    return RavenConfig(
        game_location=Path(game_location).expanduser() if game_location else None,
        cache_dir=(env_settings.cache_dir or defaults.cache_dir).expanduser(),
        modlinks_url=env_settings.modlinks_url or defaults.modlinks_url,
        api_user_agent=env_settings.api_user_agent or defaults.api_user_agent,
        http_timeout=env_settings.http_timeout or defaults.http_timeout,
    )


def require_game_location(cfg: RavenConfig) -> Path:
    if cfg.game_location is None:
        raise ConfigError("setup not done yet: run 'raven setup <game location>' first.")
    return cfg.game_location
