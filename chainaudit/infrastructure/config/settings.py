"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a YAML
configuration file (``~/.chainaudit/config.yaml``). Dotted keys such as
``ai.models`` are resolved through nested YAML mappings and map to
upper-case, underscore separated environment variables (``AI_MODELS``).
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from chainaudit.domain.models.common import (
    DEFAULT_ANALYSIS_TIMEOUT_S,
    DEFAULT_HEALTH_CHECK_TIMEOUT_S,
    DEFAULT_MAX_CONTRACT_SIZE,
)

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".chainaudit"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_AI_MODELS = ["moonshotai/kimi-k2:free", "z-ai/glm-4.5-air:free"]

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False

def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values passed to get_config

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. YAML file (lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a mapping.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. .env file (override=False: real environment variables win)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("No .env file found at or above the current directory.")

    _loaded = True
    logger.info("Configuration loading process completed.")

def reset_configuration() -> None:
    """Forgets loaded configuration so the next load_configuration re-reads it."""
    global _config, _loaded
    _config = {}
    _loaded = False

def _coerce_env_value(value: str) -> Any:
    if value.lower() == 'true':
        return True
    if value.lower() == 'false':
        return False
    try:
        if '.' in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value

def _lookup_nested(key: str) -> Any:
    """Resolves ``a.b.c`` against the YAML store; flat keys win over nesting."""
    if key in _config:
        return _config[key]
    node: Any = _config
    for part in key.split('.'):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node

def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable
    3. YAML config
    4. Default value

    Args:
        key: The configuration key, dotted for nested YAML sections
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = key.upper().replace('.', '_')
    if env_key in os.environ:
        return _coerce_env_value(os.environ[env_key])

    value = _lookup_nested(key)
    if value is not None:
        return value

    logger.debug(f"Config key '{key}' not found in environment or loaded config. Returning default: {default}")
    return default

def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    try:
        cwd = Path.cwd()
        for path in [cwd] + list(cwd.parents):
            env_path = path / ENV_FILE_NAME
            if env_path.is_file():
                return env_path
    except OSError as e:
        logger.warning(f"Error searching for .env file: {e}")
    return None

# --- Convenience Functions ---

def _as_float(key: str, default: float) -> float:
    value = get_config(key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid numeric value for '{key}': {value!r}. Using {default}.")
        return default

def _as_int(key: str, default: int) -> int:
    return int(_as_float(key, default))

def _as_bool(key: str, default: bool) -> bool:
    flag = get_config(key, default)
    if isinstance(flag, str):
        return flag.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(flag)

def get_openrouter_api_key() -> Optional[str]:
    """Convenience function to get the OpenRouter API key."""
    key = get_config('OPENROUTER_API_KEY') or get_config('openrouter.api_key')
    return str(key) if key is not None else None

def get_openrouter_base_url() -> str:
    return str(get_config('openrouter.base_url', OPENROUTER_BASE_URL))

def get_groq_api_key() -> Optional[str]:
    """Convenience function to get the Groq API key."""
    key = get_config('GROQ_API_KEY') or get_config('groq.api_key')
    return str(key) if key is not None else None

def get_ai_models() -> List[str]:
    """Gets the ensemble model list as ``provider:model`` (or bare model) strings."""
    models = get_config('ai.models', DEFAULT_AI_MODELS)
    if isinstance(models, str):
        models = [m.strip() for m in models.split(',')]
    return [str(m) for m in models if str(m).strip()]

def get_ai_timeout() -> float:
    return _as_float('ai.timeout_seconds', 120.0)

def get_ai_max_tokens() -> int:
    return _as_int('ai.max_tokens', 4000)

def get_ai_temperature() -> float:
    return _as_float('ai.temperature', 0.1)

def get_ensemble_threshold() -> float:
    return _as_float('ai.ensemble_threshold', 0.6)

def is_ai_enabled() -> bool:
    return _as_bool('ai.enabled', True)

def get_analysis_timeout() -> float:
    return _as_float('analysis.timeout_seconds', DEFAULT_ANALYSIS_TIMEOUT_S)

def get_max_contract_size() -> int:
    return _as_int('analysis.max_file_size_bytes', DEFAULT_MAX_CONTRACT_SIZE)

def get_health_check_timeout() -> float:
    return _as_float('analysis.health_check_timeout_seconds', DEFAULT_HEALTH_CHECK_TIMEOUT_S)

def get_fallback_settings() -> Dict[str, Any]:
    """Gets retry and degradation switches for the fallback service."""
    return {
        'max_retry_attempts': _as_int('fallback.max_retries', 3),
        'retry_delay_s': _as_float('fallback.retry_delay_seconds', 1.0),
        'enable_ai_fallback': _as_bool('fallback.enable_ai', True),
        'enable_basic_validation': _as_bool('fallback.enable_basic_validation', True),
    }

def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")

def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")
