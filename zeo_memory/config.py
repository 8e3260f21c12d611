"""
Memory engine configuration.

Settings come from four layers, later ones winning:
defaults, a ``.zeo-memory.yml`` file, ``ZEO_MEMORY_*`` / ``OPENAI_*`` /
``REDIS_URL`` environment variables, and keyword overrides passed to
``load_config``.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .embeddings import DEFAULT_DIMENSION, DEFAULT_MAX_INPUT_LENGTH


logger = logging.getLogger(__name__)


# Searched for in each candidate directory, first match wins
CONFIG_FILE_NAMES = [
    ".zeo-memory.yml",
    ".zeo-memory.yaml",
    "zeo-memory.yml",
    "zeo-memory.yaml",
]


@dataclass
class StorageConfig:
    """Configuration for the durable record store."""
    
    db_path: Optional[str] = None  # None means ~/.zeo_memory/memory.db


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""
    
    enabled: bool = True
    model: str = "text-embedding-3-small"
    dimension: int = DEFAULT_DIMENSION
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    timeout: float = 30.0  # seconds
    max_input_length: int = DEFAULT_MAX_INPUT_LENGTH


@dataclass
class CacheConfig:
    """Configuration for the read-through cache."""
    
    backend: str = "memory"  # "memory" or "redis"
    ttl: int = 3600  # seconds
    max_size: int = 1000  # in-memory backend only
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "zeo"


@dataclass
class MemoryEngineConfig:
    """
    Complete configuration for the memory engine.
    
    Example YAML configuration:
        ```yaml
        storage:
          db_path: "~/.zeo_memory/memory.db"
        
        embedding:
          model: "text-embedding-3-small"
          dimension: 384
          timeout: 30
        
        cache:
          backend: "redis"
          ttl: 3600
          redis_url: "redis://localhost:6379/0"
        ```
    """
    
    storage: StorageConfig = field(default_factory=StorageConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    
    @classmethod
    def from_dict(cls, data: dict) -> "MemoryEngineConfig":
        """Build from a merged settings dict; missing keys keep their defaults."""
        storage_data = data.get("storage", {})
        embedding_data = data.get("embedding", {})
        cache_data = data.get("cache", {})
        
        db_path = storage_data.get("db_path")
        if db_path and db_path != ":memory:":
            db_path = str(Path(db_path).expanduser())
        
        return cls(
            storage=StorageConfig(db_path=db_path),
            embedding=EmbeddingConfig(
                enabled=embedding_data.get("enabled", True),
                model=embedding_data.get("model", "text-embedding-3-small"),
                dimension=int(embedding_data.get("dimension", DEFAULT_DIMENSION)),
                api_key=embedding_data.get("api_key"),
                api_base=embedding_data.get("api_base"),
                timeout=float(embedding_data.get("timeout", 30.0)),
                max_input_length=int(
                    embedding_data.get("max_input_length", DEFAULT_MAX_INPUT_LENGTH)
                ),
            ),
            cache=CacheConfig(
                backend=cache_data.get("backend", "memory"),
                ttl=int(cache_data.get("ttl", 3600)),
                max_size=int(cache_data.get("max_size", 1000)),
                redis_url=cache_data.get("redis_url", "redis://localhost:6379/0"),
                redis_prefix=cache_data.get("redis_prefix", "zeo"),
            ),
        )
    
    def to_dict(self) -> dict:
        """Plain dict form with the API key redacted."""
        return {
            "storage": {
                "db_path": self.storage.db_path,
            },
            "embedding": {
                "enabled": self.embedding.enabled,
                "model": self.embedding.model,
                "dimension": self.embedding.dimension,
                "api_key": "***" if self.embedding.api_key else None,  # Redact API key
                "api_base": self.embedding.api_base,
                "timeout": self.embedding.timeout,
                "max_input_length": self.embedding.max_input_length,
            },
            "cache": {
                "backend": self.cache.backend,
                "ttl": self.cache.ttl,
                "max_size": self.cache.max_size,
                "redis_url": self.cache.redis_url,
                "redis_prefix": self.cache.redis_prefix,
            },
        }


def find_config_file(start_path: Optional[str] = None) -> Optional[Path]:
    """
    Locate a ``.zeo-memory.yml`` style file.
    
    ``start_path`` is tried first, then the working directory and each
    of its parents, then the home directory. The first match wins.
    """
    candidates = [Path(start_path)] if start_path else []
    cwd = Path.cwd()
    candidates.append(cwd)
    candidates.extend(cwd.parents)
    candidates.append(Path.home())
    
    for directory in candidates:
        for config_name in CONFIG_FILE_NAMES:
            config_path = directory / config_name
            if config_path.is_file():
                logger.debug(f"Using memory engine config {config_path}")
                return config_path
    
    return None


def load_yaml_file(file_path: Path) -> dict:
    """Parse a config file, or return {} when it cannot be read or parsed."""
    try:
        with open(file_path, 'r') as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Ignoring unreadable config file {file_path}: {e}")
        return {}


# (environment variable, section, key, converter)
ENVIRONMENT_VARIABLES = [
    ("ZEO_MEMORY_DB_PATH", "storage", "db_path", str),
    ("ZEO_MEMORY_EMBEDDING_MODEL", "embedding", "model", str),
    ("OPENAI_API_KEY", "embedding", "api_key", str),
    ("OPENAI_BASE_URL", "embedding", "api_base", str),
    ("ZEO_MEMORY_CACHE_BACKEND", "cache", "backend", str),
    ("ZEO_MEMORY_CACHE_TTL", "cache", "ttl", int),
    ("REDIS_URL", "cache", "redis_url", str),
]


def load_config_from_env() -> dict:
    """
    Collect settings from ``ENVIRONMENT_VARIABLES``.
    
    Empty variables are treated as unset. A value that fails conversion
    is logged and skipped.
    """
    config: dict = {"storage": {}, "embedding": {}, "cache": {}}
    
    for variable, section, key, convert in ENVIRONMENT_VARIABLES:
        raw = os.environ.get(variable)
        if not raw:
            continue
        try:
            config[section][key] = convert(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {variable}: {raw!r}")
    
    return config


def load_config(
    config_path: Optional[str] = None,
    **overrides: Any,
) -> MemoryEngineConfig:
    """
    Build the engine configuration from file, environment and overrides.
    
    Args:
        config_path: Explicit config file. When omitted the file is
            searched for with ``find_config_file``.
        **overrides: Nested section dictionaries, e.g.
            ``storage={"db_path": ":memory:"}``.
    """
    merged: dict = {}
    
    if config_path:
        file_path = Path(config_path)
        if file_path.exists():
            merged = load_yaml_file(file_path)
        else:
            logger.warning(f"Config file not found: {config_path}")
    else:
        found = find_config_file()
        if found:
            merged = load_yaml_file(found)
    
    merged = _deep_merge(merged, load_config_from_env())
    merged = _deep_merge(merged, overrides)
    
    return MemoryEngineConfig.from_dict(merged)


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge ``override`` into a copy of ``base``; None values never win."""
    result = dict(base)
    
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        elif value is not None:
            result[key] = value
    
    return result
