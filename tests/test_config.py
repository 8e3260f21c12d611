"""Tests for configuration module."""

import os
import pytest
from pathlib import Path
from unittest.mock import patch

from zeo_memory.config import (
    CacheConfig,
    EmbeddingConfig,
    MemoryEngineConfig,
    StorageConfig,
    _deep_merge,
    find_config_file,
    load_config,
    load_config_from_env,
    load_yaml_file,
)


@pytest.fixture(autouse=True)
def _no_stray_config(monkeypatch, tmp_path):
    """Run each test from an empty working directory."""
    monkeypatch.chdir(tmp_path)


class TestConfigDefaults:
    """Test default configuration values."""
    
    def test_storage_defaults(self):
        """No explicit path means the home-directory default."""
        assert StorageConfig().db_path is None
    
    def test_embedding_defaults(self):
        """Embeddings default to a 384-dimension OpenAI model."""
        config = EmbeddingConfig()
        
        assert config.enabled is True
        assert config.model == "text-embedding-3-small"
        assert config.dimension == 384
        assert config.timeout == 30.0
        assert config.max_input_length == 1500
        assert config.api_key is None
    
    def test_cache_defaults(self):
        """The cache is in-process with a one hour TTL."""
        config = CacheConfig()
        
        assert config.backend == "memory"
        assert config.ttl == 3600
        assert config.max_size == 1000


class TestMemoryEngineConfig:
    """Test the combined configuration."""
    
    def test_from_dict_minimal(self):
        """An empty dict yields defaults."""
        config = MemoryEngineConfig.from_dict({})
        
        assert config.storage.db_path is None
        assert config.embedding.model == "text-embedding-3-small"
        assert config.cache.backend == "memory"
    
    def test_from_dict_full(self):
        """Every section is read."""
        config = MemoryEngineConfig.from_dict({
            "storage": {"db_path": "/data/memory.db"},
            "embedding": {
                "enabled": False,
                "model": "text-embedding-3-large",
                "dimension": 256,
                "api_key": "sk-test",
                "timeout": 5,
            },
            "cache": {
                "backend": "redis",
                "ttl": 60,
                "redis_url": "redis://cache:6379/1",
                "redis_prefix": "test",
            },
        })
        
        assert config.storage.db_path == "/data/memory.db"
        assert config.embedding.enabled is False
        assert config.embedding.dimension == 256
        assert config.embedding.timeout == 5.0
        assert config.cache.backend == "redis"
        assert config.cache.ttl == 60
        assert config.cache.redis_url == "redis://cache:6379/1"
        assert config.cache.redis_prefix == "test"
    
    def test_expands_home(self):
        """A leading ~ in the database path is expanded."""
        config = MemoryEngineConfig.from_dict({"storage": {"db_path": "~/memory.db"}})
        assert config.storage.db_path == str(Path.home() / "memory.db")
    
    def test_in_memory_path_kept(self):
        """The :memory: path is passed through untouched."""
        config = MemoryEngineConfig.from_dict({"storage": {"db_path": ":memory:"}})
        assert config.storage.db_path == ":memory:"
    
    def test_to_dict_redacts_key(self):
        """The API key is never echoed back."""
        config = MemoryEngineConfig.from_dict({"embedding": {"api_key": "sk-secret"}})
        
        data = config.to_dict()
        
        assert data["embedding"]["api_key"] == "***"
        assert data["cache"]["backend"] == "memory"
        assert "sk-secret" not in str(data)


class TestFindConfigFile:
    """Test cases for find_config_file function."""
    
    def test_find_in_directory(self, tmp_path):
        """Test finding config file in specified directory."""
        config_file = tmp_path / ".zeo-memory.yml"
        config_file.write_text("cache:\n  backend: memory")
        
        assert find_config_file(str(tmp_path)) == config_file
    
    def test_find_yaml_extension(self, tmp_path):
        """Test finding config file with .yaml extension."""
        config_file = tmp_path / ".zeo-memory.yaml"
        config_file.write_text("cache:\n  backend: memory")
        
        assert find_config_file(str(tmp_path)) == config_file
    
    def test_not_found(self, tmp_path):
        """Test when no config file is found."""
        result = find_config_file(str(tmp_path))
        
        # Parent or home directories may still hold a config
        assert result is None or isinstance(result, Path)


class TestLoadYamlFile:
    """Test cases for load_yaml_file function."""
    
    def test_load_valid_yaml(self, tmp_path):
        """Test loading a valid YAML file."""
        config_file = tmp_path / "config.yml"
        config_file.write_text("embedding:\n  model: custom\n  dimension: 128")
        
        data = load_yaml_file(config_file)
        
        assert data["embedding"]["model"] == "custom"
        assert data["embedding"]["dimension"] == 128
    
    def test_load_empty_yaml(self, tmp_path):
        """Test loading an empty YAML file."""
        config_file = tmp_path / "config.yml"
        config_file.write_text("")
        
        assert load_yaml_file(config_file) == {}
    
    def test_load_invalid_yaml(self, tmp_path):
        """Malformed YAML is ignored."""
        config_file = tmp_path / "config.yml"
        config_file.write_text("embedding: [unclosed")
        
        assert load_yaml_file(config_file) == {}
    
    def test_load_nonexistent_file(self, tmp_path):
        """Test loading a non-existent file."""
        assert load_yaml_file(tmp_path / "nonexistent.yml") == {}


class TestLoadConfigFromEnv:
    """Test cases for load_config_from_env function."""
    
    @patch.dict('os.environ', {
        'ZEO_MEMORY_DB_PATH': '/tmp/zeo.db',
        'ZEO_MEMORY_EMBEDDING_MODEL': 'env-model',
        'OPENAI_API_KEY': 'openai-key',
        'OPENAI_BASE_URL': 'http://localhost:8080/v1',
        'ZEO_MEMORY_CACHE_BACKEND': 'redis',
        'ZEO_MEMORY_CACHE_TTL': '120',
        'REDIS_URL': 'redis://env:6379/0',
    }, clear=True)
    def test_all_variables(self):
        """Every supported variable is read."""
        config = load_config_from_env()
        
        assert config["storage"]["db_path"] == "/tmp/zeo.db"
        assert config["embedding"]["model"] == "env-model"
        assert config["embedding"]["api_key"] == "openai-key"
        assert config["embedding"]["api_base"] == "http://localhost:8080/v1"
        assert config["cache"]["backend"] == "redis"
        assert config["cache"]["ttl"] == 120
        assert config["cache"]["redis_url"] == "redis://env:6379/0"
    
    @patch.dict('os.environ', {'ZEO_MEMORY_CACHE_TTL': 'soon'}, clear=True)
    def test_invalid_ttl_ignored(self):
        """A non-integer TTL is skipped."""
        assert "ttl" not in load_config_from_env()["cache"]
    
    @patch.dict('os.environ', {}, clear=True)
    def test_empty_environment(self):
        """No variables means empty sections."""
        assert load_config_from_env() == {"storage": {}, "embedding": {}, "cache": {}}


class TestLoadConfig:
    """Test cases for load_config function."""
    
    @patch.dict('os.environ', {}, clear=True)
    def test_load_from_file(self, tmp_path):
        """Test loading config from file."""
        config_file = tmp_path / ".zeo-memory.yml"
        config_file.write_text("""
storage:
  db_path: /data/memory.db
embedding:
  model: file-model
cache:
  ttl: 600
""")
        
        config = load_config(config_path=str(config_file))
        
        assert config.storage.db_path == "/data/memory.db"
        assert config.embedding.model == "file-model"
        assert config.cache.ttl == 600
    
    @patch.dict('os.environ', {'OPENAI_API_KEY': 'env-key', 'ZEO_MEMORY_EMBEDDING_MODEL': 'env-model'}, clear=True)
    def test_env_overrides_file(self, tmp_path):
        """Environment variables override file config."""
        config_file = tmp_path / ".zeo-memory.yml"
        config_file.write_text("embedding:\n  model: file-model\n  dimension: 128")
        
        config = load_config(config_path=str(config_file))
        
        assert config.embedding.api_key == "env-key"
        assert config.embedding.model == "env-model"
        assert config.embedding.dimension == 128
    
    @patch.dict('os.environ', {'ZEO_MEMORY_EMBEDDING_MODEL': 'env-model'}, clear=True)
    def test_overrides_win(self, tmp_path):
        """Programmatic overrides beat the environment."""
        config = load_config(
            config_path=str(tmp_path / "missing.yml"),
            embedding={"model": "override-model"},
        )
        
        assert config.embedding.model == "override-model"
    
    @patch.dict('os.environ', {}, clear=True)
    def test_missing_file_uses_defaults(self, tmp_path):
        """A missing explicit file falls back to defaults."""
        config = load_config(config_path=str(tmp_path / "missing.yml"))
        
        assert config.cache.backend == "memory"
        assert os.environ.get("OPENAI_API_KEY") is None
        assert config.embedding.api_key is None


class TestDeepMerge:
    """Test cases for _deep_merge function."""
    
    def test_merge_flat_dicts(self):
        """Test merging flat dictionaries."""
        assert _deep_merge({"a": 1, "b": 2}, {"b": 3, "c": 4}) == {"a": 1, "b": 3, "c": 4}
    
    def test_merge_nested_dicts(self):
        """Test merging nested dictionaries."""
        base = {"cache": {"ttl": 60, "backend": "memory"}}
        override = {"cache": {"ttl": 120}}
        
        assert _deep_merge(base, override) == {"cache": {"ttl": 120, "backend": "memory"}}
    
    def test_merge_with_none_values(self):
        """None values do not override."""
        assert _deep_merge({"a": 1}, {"a": None}) == {"a": 1}
    
    def test_base_not_mutated(self):
        """Merging returns a new dictionary."""
        base = {"cache": {"ttl": 60}}
        _deep_merge(base, {"cache": {"ttl": 120}})
        
        assert base == {"cache": {"ttl": 60}}

