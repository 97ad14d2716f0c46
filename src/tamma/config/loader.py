"""Find, merge and validate TOML configuration.

Sources, lowest priority first:
    1. Model defaults in ``tamma.config.schema``
    2. ``$XDG_CONFIG_HOME/tamma/config.toml`` (``~/.config`` if unset)
    3. ``./tamma.toml``
    4. The file named by ``$TAMMA_CONFIG``
    5. An explicit ``path`` argument
    6. ``overrides`` passed to ``load_config``

Credentials: an entry without ``api_key`` takes it from the environment
variable named by its ``api_key_env``, when that variable is set.
"""

from __future__ import annotations

import functools
import logging
import os
import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from tamma.core.errors import ConfigError

from .schema import TammaConfig

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

ENV_CONFIG_VAR = "TAMMA_CONFIG"
PROJECT_FILE = "tamma.toml"


def _existing(path: str | Path, error: str) -> Path:
    candidate = Path(path)
    if not candidate.is_file():
        raise ConfigError(f"{error}: {path}")
    return candidate


def config_search_path() -> list[Path]:
    """Config files that exist right now, lowest priority first.

    Raises:
        ConfigError: ``$TAMMA_CONFIG`` is set but names no file.
    """
    config_home = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"
    candidates = [
        Path(config_home) / "tamma" / "config.toml",
        Path.cwd() / PROJECT_FILE,
    ]
    found = [p for p in candidates if p.is_file()]

    explicit = os.environ.get(ENV_CONFIG_VAR)
    if explicit:
        error = f"{ENV_CONFIG_VAR} points to non-existent file"
        found.append(_existing(explicit, error))
    return found


def read_table(path: Path) -> dict[str, Any]:
    """Parse one TOML file into a plain dict."""
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    try:
        return tomllib.loads(raw.decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e


def merge_tables(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into a copy of ``base``; nested tables merge too."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_tables(current, value)
        else:
            merged[key] = value
    return merged


def resolve_credentials(config: TammaConfig) -> None:
    """Fill missing ``api_key`` values from ``api_key_env`` (in place)."""
    entries: Iterable[tuple[str, Any]] = [
        *config.providers.items(),
        *config.platforms.items(),
    ]
    for name, entry in entries:
        if entry.api_key is not None or not entry.api_key_env:
            continue
        value = os.environ.get(entry.api_key_env)
        if value:
            entry.api_key = value
            logger.debug("Credential for %s read from $%s", name, entry.api_key_env)


def load_config(
    path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> TammaConfig:
    """Load every config source and validate the merged result.

    Args:
        path: Explicit config file, merged after the discovered ones.
        overrides: Merged last; wins over every file.

    Raises:
        ConfigError: Missing explicit file, unreadable or invalid TOML,
            or a value the schema rejects.
    """
    sources = config_search_path()
    if path is not None:
        sources.append(_existing(path, "Config file not found"))

    data = functools.reduce(merge_tables, map(read_table, sources), {})
    if overrides:
        data = merge_tables(data, overrides)

    try:
        config = TammaConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e

    resolve_credentials(config)
    logger.debug("Configuration loaded from %d file(s)", len(sources))
    return config
