"""Load sync engine configuration from a TOML file."""

import tomllib
from pathlib import Path
from urllib.parse import quote

from db_sync.config.models import SyncConfig

PASSWORD_PLACEHOLDER = "[YOUR-PASSWORD]"


def load_sync_config(config_path: Path | None = None) -> SyncConfig:
    """Load sync configuration from TOML file.

    Args:
        config_path: Path to sync.toml (default: ``./sync.toml`` in the
            current working directory)

    Returns:
        SyncConfig with settings, connections, and groups

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config format is invalid
    """
    if config_path is None:
        config_path = Path.cwd() / "sync.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Sync config not found: {config_path}\n"
            f"Create sync.toml with [connections.<id>] entries."
        )

    with open(config_path, "rb") as f:
        try:
            data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    return SyncConfig(
        sync=data.get("sync", {}),
        connections=data.get("connections", {}),
        groups=data.get("groups", {}),
    )


def resolve_url(url: str, db_password: str | None = None) -> str:
    """Substitute the password placeholder in a connection URL.

    Example:
        >>> resolve_url("postgresql://app:[YOUR-PASSWORD]@db/app", "p@ss")
        'postgresql://app:p%40ss@db/app'
    """
    if db_password and PASSWORD_PLACEHOLDER in url:
        url = url.replace(PASSWORD_PLACEHOLDER, quote(db_password, safe=""))
    return url
