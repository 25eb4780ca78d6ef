"""Settings resolution: keyword overrides > KTN_* env / .env > config.toml [settings] > defaults."""

from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from typing import Literal

import tomlkit
import typer
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_PATH = Path.home() / ".config" / "killthenoise" / "config.toml"
DEFAULT_STATE_PATH = Path.home() / ".config" / "killthenoise" / "state.toml"


class KtnSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="KTN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backend
    api_base: str = "http://localhost:8000"
    request_timeout: float = Field(default=30.0, gt=0)

    # Issue list
    issue_limit: int = Field(default=20, gt=0)

    # OAuth polling
    poll_interval_seconds: float = Field(default=3.0, gt=0)
    poll_timeout_seconds: float = Field(default=300.0, gt=0)  # hard ceiling, 5 minutes

    # Logging
    log_level: str = "WARNING"
    log_format: Literal["console", "json"] = "console"

    # Persisted client state (tenant, integration ids, filters)
    state_path: Path = DEFAULT_STATE_PATH


@lru_cache(maxsize=1)
def _load_toml() -> tomlkit.TOMLDocument:
    """Load ~/.config/killthenoise/config.toml, returning empty document if missing."""
    if not CONFIG_PATH.exists():
        return tomlkit.document()
    return tomlkit.load(CONFIG_PATH.open())


def _settings_table(config: Mapping) -> dict:
    table = config.get("settings")
    # tomlkit Table implements MutableMapping but not dict, so check Mapping
    if isinstance(table, Mapping):
        return {k: v.unwrap() if hasattr(v, "unwrap") else v for k, v in table.items()}
    return {}


def get_settings(**overrides: object) -> KtnSettings:
    """Return a fully populated KtnSettings.

    Precedence (highest to lowest):
    1. keyword overrides (CLI flags)
    2. KTN_* env vars and .env in cwd
    3. [settings] table in ~/.config/killthenoise/config.toml
    4. built-in defaults
    """
    file_defaults = _settings_table(_load_toml())
    explicit = {k: v for k, v in overrides.items() if v is not None}

    try:
        # init kwargs beat env in pydantic-settings, so env values are layered
        # over the TOML table explicitly
        from_env = KtnSettings()
        env_values = {k: getattr(from_env, k) for k in from_env.model_fields_set}
        return KtnSettings(**{**file_defaults, **env_values, **explicit})
    except ValidationError as exc:
        errors = "; ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors())
        typer.echo(f"Invalid configuration in {CONFIG_PATH} or KTN_* environment: {errors}")
        raise typer.Exit(1)
