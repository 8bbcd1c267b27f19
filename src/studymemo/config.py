"""Configuration loading from environment variables and studymemo.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_BACKUP_DIR = Path.home() / ".studymemo" / "backup"
_CONFIG_FILENAME = "studymemo.toml"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class CatalogConfig:
    """Remote catalog server configuration."""

    base_url: str = "http://localhost:8042"
    probe_path: str = "/studies"
    metadata_key: str = "1025"
    timeout: int = 300
    use_lookup: bool = True
    prune_superseded: bool = True


@dataclass
class BackupConfig:
    """Local backup tier configuration."""

    backup_dir: Path = _DEFAULT_BACKUP_DIR
    mirror_on_remote_save: bool = False


@dataclass
class StudyMemoConfig:
    """Top-level configuration."""

    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> StudyMemoConfig:
    """Load configuration from environment variables and optional studymemo.toml.

    Priority: environment variables > studymemo.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.studymemo/
        for candidate in [
            Path.cwd() / _CONFIG_FILENAME,
            Path.home() / ".studymemo" / _CONFIG_FILENAME,
        ]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    catalog_data = file_data.get("catalog", {})
    backup_data = file_data.get("backup", {})

    config = StudyMemoConfig(
        catalog=CatalogConfig(
            base_url=os.getenv(
                "STUDYMEMO_CATALOG_URL", catalog_data.get("base_url", "http://localhost:8042")
            ),
            probe_path=os.getenv("STUDYMEMO_PROBE_PATH", catalog_data.get("probe_path", "/studies")),
            metadata_key=str(
                os.getenv("STUDYMEMO_METADATA_KEY", catalog_data.get("metadata_key", "1025"))
            ),
            timeout=int(os.getenv("STUDYMEMO_TIMEOUT", catalog_data.get("timeout", 300))),
            use_lookup=_env_bool("STUDYMEMO_USE_LOOKUP", catalog_data.get("use_lookup", True)),
            prune_superseded=_env_bool(
                "STUDYMEMO_PRUNE_SUPERSEDED", catalog_data.get("prune_superseded", True)
            ),
        ),
        backup=BackupConfig(
            backup_dir=Path(
                os.getenv("STUDYMEMO_BACKUP_DIR", backup_data.get("backup_dir", str(_DEFAULT_BACKUP_DIR)))
            ).expanduser(),
            mirror_on_remote_save=_env_bool(
                "STUDYMEMO_MIRROR_LOCAL", backup_data.get("mirror_on_remote_save", False)
            ),
        ),
        log_level=os.getenv("STUDYMEMO_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
