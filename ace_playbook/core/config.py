"""Configuration loader for ace-playbook.

Loads from ace_playbook/configs/default.toml and overrides with environment variables.
"""

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path


@dataclass
class AceSettings:
    enabled: bool
    default_max_bullets: int
    default_max_tokens: int
    reflector_model: str
    curator_model: str
    auto_reflect: bool
    auto_curate: bool
    similarity_threshold: float


@dataclass
class StorageConfig:
    root: str


@dataclass
class LoggingConfig:
    level: str
    format: str


@dataclass
class LLMConfig:
    provider: str
    temperature: float
    max_tokens: int
    timeout_seconds: float


@dataclass
class ACEConfig:
    ace: AceSettings
    storage: StorageConfig
    logging: LoggingConfig
    llm: LLMConfig


DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "configs" / "default.toml"


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in ("true", "1", "yes")


def _validate_config(config: ACEConfig) -> None:
    """Validate configuration values.

    Args:
        config: ACEConfig to validate

    Raises:
        ValueError: If validation fails
    """
    if config.ace.default_max_bullets < 1:
        raise ValueError(
            f"ace.default_max_bullets must be >= 1, got {config.ace.default_max_bullets}"
        )
    if config.ace.default_max_tokens < 1:
        raise ValueError(
            f"ace.default_max_tokens must be >= 1, got {config.ace.default_max_tokens}"
        )
    if not 0.0 <= config.ace.similarity_threshold <= 1.0:
        val = config.ace.similarity_threshold
        raise ValueError(f"ace.similarity_threshold must be in [0.0, 1.0], got {val}")

    valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if config.logging.level.upper() not in valid_levels:
        raise ValueError(f"logging.level must be one of {valid_levels}, got {config.logging.level}")
    valid_formats = {"json", "text"}
    if config.logging.format not in valid_formats:
        raise ValueError(f"logging.format must be one of {valid_formats}, got {config.logging.format}")

    if config.llm.temperature < 0.0 or config.llm.temperature > 2.0:
        raise ValueError(f"llm.temperature must be in [0.0, 2.0], got {config.llm.temperature}")
    if config.llm.max_tokens < 1:
        raise ValueError(f"llm.max_tokens must be >= 1, got {config.llm.max_tokens}")
    if config.llm.timeout_seconds <= 0:
        raise ValueError(f"llm.timeout_seconds must be > 0, got {config.llm.timeout_seconds}")


def load_config(config_path: Path | None = None) -> ACEConfig:
    """Load configuration from TOML file and override with env vars.

    Args:
        config_path: Path to TOML config file. Defaults to the packaged default.toml

    Returns:
        ACEConfig instance with merged configuration

    Raises:
        ValueError: If configuration validation fails
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    with open(config_path, "rb") as f:
        config_dict = tomllib.load(f)

    ace_dict = config_dict["ace"]
    storage_dict = config_dict.get("storage", {})

    # Override with environment variables (ACE_ prefix)
    enabled = _env_bool("ACE_ENABLED", ace_dict.get("enabled", True))
    max_bullets = int(os.getenv("ACE_DEFAULT_MAX_BULLETS", ace_dict["default_max_bullets"]))
    max_tokens = int(os.getenv("ACE_DEFAULT_MAX_TOKENS", ace_dict["default_max_tokens"]))
    reflector_model = os.getenv("ACE_REFLECTOR_MODEL", ace_dict["reflector_model"])
    curator_model = os.getenv("ACE_CURATOR_MODEL", ace_dict["curator_model"])
    auto_reflect = _env_bool("ACE_AUTO_REFLECT", ace_dict.get("auto_reflect", False))
    auto_curate = _env_bool("ACE_AUTO_CURATE", ace_dict.get("auto_curate", False))
    similarity = float(
        os.getenv("ACE_SIMILARITY_THRESHOLD", ace_dict.get("similarity_threshold", 0.85))
    )

    storage_root = os.getenv("ACE_CONFIG_ROOT", storage_dict.get("root", "~/.config/ace-playbook"))

    log_level = os.getenv("ACE_LOG_LEVEL", config_dict["logging"]["level"])
    log_format = os.getenv("ACE_LOG_FORMAT", config_dict["logging"]["format"])
    llm_provider = os.getenv("ACE_LLM_PROVIDER", config_dict["llm"]["provider"])
    llm_temp = float(os.getenv("ACE_LLM_TEMPERATURE", config_dict["llm"]["temperature"]))
    llm_max_tokens = int(os.getenv("ACE_LLM_MAX_TOKENS", config_dict["llm"]["max_tokens"]))
    llm_timeout = float(
        os.getenv("ACE_LLM_TIMEOUT", config_dict["llm"].get("timeout_seconds", 60))
    )

    config = ACEConfig(
        ace=AceSettings(
            enabled=enabled,
            default_max_bullets=max_bullets,
            default_max_tokens=max_tokens,
            reflector_model=reflector_model,
            curator_model=curator_model,
            auto_reflect=auto_reflect,
            auto_curate=auto_curate,
            similarity_threshold=similarity,
        ),
        storage=StorageConfig(root=str(Path(storage_root).expanduser())),
        logging=LoggingConfig(level=log_level, format=log_format),
        llm=LLMConfig(
            provider=llm_provider,
            temperature=llm_temp,
            max_tokens=llm_max_tokens,
            timeout_seconds=llm_timeout,
        ),
    )

    _validate_config(config)

    return config


# Global config instance
_config: ACEConfig | None = None


def get_config() -> ACEConfig:
    """Get the global config instance, loading it if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() reloads it."""
    global _config
    _config = None
