"""
Configuration management for readshelf.

Configuration is built once at process start and passed into the library
and its services. Values are loaded from:
- XDG config directory: ~/.config/readshelf/config.json
- Fallback: ~/.readshelf/config.json
- Environment variables (READSHELF_*), which override the file
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, field

logger = logging.getLogger(__name__)

INDEX_BACKEND_LOCAL = "local"
INDEX_BACKEND_REMOTE = "remote"


@dataclass
class StorageConfig:
    """Where the database, uploads and covers live."""
    library_path: str = "."
    upload_dir: str = "uploads"
    public_upload_prefix: str = "/uploads"

    @property
    def library_root(self) -> Path:
        return Path(self.library_path)

    @property
    def upload_root(self) -> Path:
        upload = Path(self.upload_dir)
        if upload.is_absolute():
            return upload
        return self.library_root / upload

    @property
    def cover_root(self) -> Path:
        return self.upload_root / "img"

    def owner_upload_dir(self, owner_id: int) -> Path:
        """Uploads and extracted EPUBs of one owner; filenames are unique only per owner."""
        return self.upload_root / str(owner_id)

    def owner_cover_dir(self, owner_id: int) -> Path:
        return self.cover_root / str(owner_id)


@dataclass
class IndexConfig:
    """Search index backend selection."""
    backend: str = INDEX_BACKEND_LOCAL
    local_path: str = "lr_index.db"
    remote_url: str = "http://localhost:9200"
    index_name: str = "lr_index"
    timeout: float = 10.0
    fragment_size: int = 150
    number_of_fragments: int = 3
    no_match_size: int = 150


@dataclass
class CacheConfig:
    """Key-value cache for parsed EPUB packages and reading positions."""
    backend: str = "database"  # database, memory


@dataclass
class ToolsConfig:
    """External document-processing binaries."""
    pdfinfo: str = "pdfinfo"
    pdfimages: str = "pdfimages"
    pdfseparate: str = "pdfseparate"
    unzip: str = "unzip"


@dataclass
class TaskConfig:
    """Fire-and-forget background work."""
    max_workers: int = 4
    synchronous: bool = False


@dataclass
class ServerConfig:
    """Web server configuration."""
    host: str = "0.0.0.0"
    port: int = 8080
    default_owner_id: int = 1
    page_size: int = 18
    currently_reading_limit: int = 12


@dataclass
class ReadShelfConfig:
    """Main readshelf configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    index: IndexConfig = field(default_factory=IndexConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    tasks: TaskConfig = field(default_factory=TaskConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "storage": asdict(self.storage),
            "index": asdict(self.index),
            "cache": asdict(self.cache),
            "tools": asdict(self.tools),
            "tasks": asdict(self.tasks),
            "server": asdict(self.server),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReadShelfConfig':
        """Create from dictionary."""
        return cls(
            storage=StorageConfig(**data.get("storage", {})),
            index=IndexConfig(**data.get("index", {})),
            cache=CacheConfig(**data.get("cache", {})),
            tools=ToolsConfig(**data.get("tools", {})),
            tasks=TaskConfig(**data.get("tasks", {})),
            server=ServerConfig(**data.get("server", {})),
        )

    @classmethod
    def for_library(cls, library_path: Path, **index_options) -> 'ReadShelfConfig':
        """Default configuration rooted at a library directory."""
        config = cls()
        config.storage.library_path = str(library_path)
        for key, value in index_options.items():
            setattr(config.index, key, value)
        return config

    @property
    def local_index_path(self) -> Path:
        path = Path(self.index.local_path)
        if path.is_absolute():
            return path
        return self.storage.library_root / path


# (section, attribute, environment variable, converter)
ENV_OVERRIDES = [
    ("storage", "library_path", "READSHELF_LIBRARY_PATH", str),
    ("storage", "upload_dir", "READSHELF_UPLOAD_DIR", str),
    ("index", "backend", "READSHELF_INDEX_BACKEND", str),
    ("index", "remote_url", "READSHELF_ES_PATH", str),
    ("index", "index_name", "READSHELF_INDEX_NAME", str),
    ("cache", "backend", "READSHELF_CACHE_BACKEND", str),
    ("server", "host", "READSHELF_HOST", str),
    ("server", "port", "READSHELF_PORT", int),
    ("tasks", "max_workers", "READSHELF_WORKERS", int),
]


def get_config_path() -> Path:
    """
    Get configuration file path.

    Follows XDG Base Directory specification:
    1. $XDG_CONFIG_HOME/readshelf/config.json (usually ~/.config/readshelf/config.json)
    2. Fallback: ~/.readshelf/config.json

    Returns:
        Path to config file
    """
    xdg_config_home = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    if xdg_config_home.exists():
        config_dir = xdg_config_home / "readshelf"
    else:
        config_dir = Path.home() / ".readshelf"

    return config_dir / "config.json"


def apply_env_overrides(config: ReadShelfConfig, environ: Optional[Dict[str, str]] = None) -> ReadShelfConfig:
    """
    Override configuration values from READSHELF_* environment variables.

    READSHELF_ELASTICSEARCH=1 selects the remote index backend, mirroring
    the flag older deployments used.
    """
    environ = os.environ if environ is None else environ

    for section, attribute, env_name, convert in ENV_OVERRIDES:
        raw = environ.get(env_name)
        if raw is None or not raw.strip():
            continue
        try:
            setattr(getattr(config, section), attribute, convert(raw.strip()))
        except ValueError:
            logger.warning(f"Ignoring invalid value for {env_name}: {raw!r}")

    es_flag = environ.get("READSHELF_ELASTICSEARCH")
    if es_flag is not None and es_flag.strip():
        config.index.backend = INDEX_BACKEND_REMOTE if es_flag.strip() == "1" else INDEX_BACKEND_LOCAL

    return config


def load_config(config_path: Optional[Path] = None, environ: Optional[Dict[str, str]] = None) -> ReadShelfConfig:
    """
    Load configuration from file, then apply environment overrides.

    Returns:
        ReadShelfConfig instance with loaded values or defaults
    """
    config_path = Path(config_path) if config_path else get_config_path()

    config = ReadShelfConfig()
    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                data = json.load(f)
            config = ReadShelfConfig.from_dict(data)
        except (json.JSONDecodeError, OSError, TypeError) as e:
            logger.warning(f"Failed to load config from {config_path}: {e}; using defaults")
            config = ReadShelfConfig()

    return apply_env_overrides(config, environ)


def save_config(config: ReadShelfConfig, config_path: Optional[Path] = None) -> Path:
    """
    Save configuration to file.

    Args:
        config: Configuration to save
        config_path: Destination, defaults to get_config_path()

    Returns:
        Path the configuration was written to
    """
    config_path = Path(config_path) if config_path else get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)

    logger.info(f"Configuration saved to {config_path}")
    return config_path
