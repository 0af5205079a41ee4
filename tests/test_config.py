"""Tests for configuration loading."""

import os
import tempfile
from pathlib import Path

import pytest

from ace_playbook.core.config import get_config, load_config, reset_config

VALID_TOML = """
[ace]
enabled = true
default_max_bullets = 50
default_max_tokens = 4000
reflector_model = "reflector-model"
curator_model = "curator-model"
auto_reflect = true
auto_curate = false
similarity_threshold = {similarity}

[storage]
root = "/tmp/ace-test-root"

[llm]
provider = "anthropic"
temperature = 0.1
max_tokens = 4000
timeout_seconds = 30

[logging]
level = "{level}"
format = "{format}"
"""


def write_config(similarity: float = 0.8, level: str = "DEBUG", format: str = "text") -> Path:
    with tempfile.NamedTemporaryFile(mode="w", suffix=".toml", delete=False) as f:
        f.write(VALID_TOML.format(similarity=similarity, level=level, format=format))
        return Path(f.name)


def test_load_default_config():
    """Test loading default config file."""
    config = load_config()

    assert config.ace.enabled is True
    assert config.ace.default_max_bullets == 100
    assert config.ace.default_max_tokens == 8000
    assert config.ace.similarity_threshold == 0.85
    assert config.ace.auto_reflect is False
    assert config.logging.level == "INFO"
    assert config.llm.timeout_seconds == 60


def test_conftest_forces_mock_provider_and_temp_root():
    config = load_config()
    assert config.llm.provider == "mock"
    assert config.storage.root == os.environ["ACE_CONFIG_ROOT"]


def test_env_override(monkeypatch):
    """Test environment variable overrides."""
    monkeypatch.setenv("ACE_ENABLED", "false")
    monkeypatch.setenv("ACE_DEFAULT_MAX_BULLETS", "25")
    monkeypatch.setenv("ACE_SIMILARITY_THRESHOLD", "0.7")
    monkeypatch.setenv("ACE_CURATOR_MODEL", "openai/gpt-4o")
    monkeypatch.setenv("ACE_AUTO_CURATE", "1")
    monkeypatch.setenv("ACE_LLM_TIMEOUT", "5")

    config = load_config()
    assert config.ace.enabled is False
    assert config.ace.default_max_bullets == 25
    assert config.ace.similarity_threshold == 0.7
    assert config.ace.curator_model == "openai/gpt-4o"
    assert config.ace.auto_curate is True
    assert config.llm.timeout_seconds == 5.0


def test_custom_config_path(monkeypatch):
    """Test loading from custom config path."""
    monkeypatch.delenv("ACE_LLM_PROVIDER", raising=False)
    monkeypatch.delenv("ACE_CONFIG_ROOT", raising=False)
    temp_path = write_config()

    try:
        config = load_config(temp_path)
        assert config.ace.default_max_bullets == 50
        assert config.ace.reflector_model == "reflector-model"
        assert config.ace.auto_reflect is True
        assert config.storage.root == "/tmp/ace-test-root"
        assert config.llm.provider == "anthropic"
        assert config.llm.timeout_seconds == 30
        assert config.logging.format == "text"
    finally:
        temp_path.unlink()


def test_config_types():
    """Test that config values have correct types."""
    config = load_config()

    assert isinstance(config.ace.default_max_bullets, int)
    assert isinstance(config.ace.similarity_threshold, float)
    assert isinstance(config.llm.temperature, float)
    assert isinstance(config.llm.max_tokens, int)
    assert isinstance(config.llm.timeout_seconds, float)


def test_storage_root_expands_user(monkeypatch):
    monkeypatch.setenv("ACE_CONFIG_ROOT", "~/ace-root")
    config = load_config()
    assert config.storage.root == str(Path("~/ace-root").expanduser())


def test_validation_similarity_threshold():
    temp_path = write_config(similarity=1.5)
    try:
        with pytest.raises(ValueError, match="similarity_threshold must be in"):
            load_config(temp_path)
    finally:
        temp_path.unlink()


def test_validation_invalid_log_level():
    """Test validation of invalid logging level."""
    temp_path = write_config(level="INVALID")
    try:
        with pytest.raises(ValueError, match="logging.level must be one of"):
            load_config(temp_path)
    finally:
        temp_path.unlink()


def test_validation_invalid_log_format():
    temp_path = write_config(format="xml")
    try:
        with pytest.raises(ValueError, match="logging.format must be one of"):
            load_config(temp_path)
    finally:
        temp_path.unlink()


def test_validation_max_bullets(monkeypatch):
    monkeypatch.setenv("ACE_DEFAULT_MAX_BULLETS", "0")
    with pytest.raises(ValueError, match="default_max_bullets must be >= 1"):
        load_config()


def test_validation_timeout(monkeypatch):
    monkeypatch.setenv("ACE_LLM_TIMEOUT", "0")
    with pytest.raises(ValueError, match="timeout_seconds must be > 0"):
        load_config()


def test_get_config_is_cached():
    first = get_config()
    assert get_config() is first
    reset_config()
    assert get_config() is not first
