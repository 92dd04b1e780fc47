"""
Configuration management module for the POS ledger.

This module handles loading and saving configuration values (backend
URLs, session credentials, report preferences) and turns them into the
explicit request context every service call receives.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from api_client import RequestContext
from exceptions import ConfigError

logger = logging.getLogger(__name__)

# Default configuration values
DEFAULT_CONFIG: Dict[str, Any] = {
    'api': {
        'base_url': 'http://localhost:3002',
        'finance_url': None,
        'certificates_url': None,
        'timeout': 30.0,
    },
    'session': {
        'token': None,
        'tenant_slug': None,
        'user_name': '',
    },
    'reports': {
        'output_dir': 'reports',
        'currency_decimals': 0,
        'iva_rate': 0.0,
    },
    'aggregation': {
        'month_scope_ignores_text_filters': True,
    },
    'display': {
        'timezone': 'America/Bogota',
        'default_account': 'Efectivo',
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'file': None,
    },
}

CONFIG_FILE = 'config.yaml'
BASE_URL_ENV = 'LEDGER_API_BASE_URL'


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Merge override into a copy of base, recursing into nested dicts."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file, merged over the defaults.

    A missing file yields the defaults. The LEDGER_API_BASE_URL environment
    variable overrides api.base_url.

    Args:
        config_path: Path to the YAML file (defaults to config.yaml)

    Returns:
        Configuration dictionary with defaults for missing values

    Raises:
        ConfigError: If the file exists but is not valid YAML or not a mapping
    """
    config_path = Path(config_path or CONFIG_FILE)
    loaded: Dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(
                f"Invalid YAML in configuration file: {e}",
                details={"config_path": str(config_path)},
                original_error=e
            )
        if not isinstance(loaded, dict):
            raise ConfigError(
                "Configuration root must be a mapping",
                details={"config_path": str(config_path)}
            )
    else:
        logger.debug(f"Config file {config_path} not found, using defaults")

    config = _deep_merge(DEFAULT_CONFIG, loaded)

    env_base_url = os.environ.get(BASE_URL_ENV)
    if env_base_url:
        config['api']['base_url'] = env_base_url.strip()

    logger.info("Configuration loaded successfully")
    return config


def save_config(config: Dict[str, Any], config_path: Optional[Path] = None) -> bool:
    """
    Save configuration to a YAML file.

    Existing keys not present in config are preserved.

    Args:
        config: Configuration dictionary to save
        config_path: Destination (defaults to config.yaml)

    Returns:
        True if successful, False otherwise
    """
    config_path = Path(config_path or CONFIG_FILE)
    try:
        existing_config: Dict[str, Any] = {}
        if config_path.exists():
            with open(config_path, 'r', encoding='utf-8') as f:
                existing_config = yaml.safe_load(f) or {}

        merged = _deep_merge(existing_config, config)

        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(merged, f, default_flow_style=False, allow_unicode=True)

        logger.info("Configuration saved successfully")
        return True

    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error saving configuration: {e}", exc_info=True)
        return False


def get_preference(config: Dict[str, Any], section: str, key: str, default: Any = None) -> Any:
    """
    Read a nested preference with a fallback.

    Args:
        config: Loaded configuration
        section: Top-level section name
        key: Key inside the section
        default: Value when either level is missing

    Returns:
        Preference value
    """
    value = (config.get(section) or {}).get(key)
    return default if value is None else value


def build_request_context(config: Dict[str, Any], base_url: Optional[str] = None) -> RequestContext:
    """
    Build the explicit request context for service calls.

    Args:
        config: Loaded configuration
        base_url: Backend base URL; defaults to api.base_url

    Returns:
        RequestContext carrying base URL, token, tenant and timeout
    """
    api_config = config.get('api', {})
    session_config = config.get('session', {})
    url = base_url or api_config.get('base_url')
    if not url:
        raise ConfigError("api.base_url is not configured")

    try:
        timeout = float(api_config.get('timeout', DEFAULT_CONFIG['api']['timeout']))
    except (TypeError, ValueError) as e:
        raise ConfigError(
            "api.timeout must be a number",
            details={"timeout": api_config.get('timeout')},
            original_error=e
        )

    return RequestContext(
        base_url=url,
        token=session_config.get('token') or None,
        tenant_slug=session_config.get('tenant_slug') or None,
        user_name=session_config.get('user_name') or '',
        timeout=timeout,
    )
