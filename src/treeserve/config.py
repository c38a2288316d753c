"""Server configuration.

``ServerConfig`` is built once at startup and never mutated. Values come
from (highest precedence first) explicit overrides, usually the CLI flags,
then ``TREESERVE_*`` environment variables, then the field defaults.

Created: 2026-10-17
"""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from treeserve.errors import ConfigError


class ServerConfig(BaseSettings):
    """Immutable process-wide configuration."""

    model_config = SettingsConfigDict(env_prefix="TREESERVE_", frozen=True, extra="ignore")

    root_directory: Path = Field(default=Path("."), description="Directory tree to serve")
    port: int = Field(default=8080, gt=0, le=65535)
    host: str = "0.0.0.0"
    request_timeout: float = Field(default=30.0, gt=0, description="Listing/metadata deadline")
    transfer_timeout: float = Field(default=60.0, gt=0, description="File transfer deadline")
    shutdown_grace: float = Field(default=30.0, ge=0)
    check_storage: bool = False
    audit_log: Path | None = None
    log_level: str = "INFO"

    @classmethod
    def load(cls, **overrides: Any) -> ServerConfig:
        """Build a validated config with a canonical, readable root.

        ``None`` overrides are ignored so argparse defaults of ``None`` fall
        through to the environment.

        Raises:
            ConfigError: invalid values, an unusable root directory, or an
                audit log path whose directory cannot be created.
        """
        values = {k: v for k, v in overrides.items() if v is not None}
        try:
            config = cls(**values)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

        root = Path(os.path.abspath(os.path.expanduser(config.root_directory)))
        validate_root_directory(root)
        update: dict[str, Any] = {"root_directory": root.resolve()}
        if config.audit_log is not None:
            update["audit_log"] = prepare_audit_log(config.audit_log)
        return config.model_copy(update=update)


def prepare_audit_log(path: Path) -> Path:
    """Create the audit log's parent directory and return the absolute path."""
    path = Path(os.path.abspath(os.path.expanduser(path)))
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"Cannot create audit log directory {path.parent}: {e}") from e
    if path.is_dir():
        raise ConfigError(f"Audit log path is a directory: {path}")
    return path


def validate_root_directory(root: Path) -> None:
    """Check that *root* exists, is a directory and can be listed."""
    try:
        st = root.stat()
    except FileNotFoundError:
        raise ConfigError(f"Root directory does not exist: {root}") from None
    except PermissionError:
        raise ConfigError(f"Permission denied accessing root directory: {root}") from None
    except OSError as e:
        raise ConfigError(f"Cannot access root directory {root}: {e}") from e

    if not stat.S_ISDIR(st.st_mode):
        raise ConfigError(f"Root path is not a directory: {root}")

    try:
        with os.scandir(root) as it:
            next(it, None)
    except OSError as e:
        raise ConfigError(f"Cannot read root directory {root}: {e}") from e
