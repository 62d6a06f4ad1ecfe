"""
YAML configuration files

Three optional files live in the config directory:

    config.yaml    symbols, dates and settings.{period, adjust_type}
    db.yaml        db.{host, port, user, password, name, sslmode}
    longport.yaml  longport.{app_key, app_secret, access_token, region,
                             threads, rps, timeout_ms}

Only config.yaml is mandatory. Values found in the files override the
environment.
"""

import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger

from candlefetcher.config.fetcher_settings import FetcherSettings
from candlefetcher.exceptions import ConfigurationError

APP_CONFIG_FILE = "config.yaml"
DB_CONFIG_FILE = "db.yaml"
LONGPORT_CONFIG_FILE = "longport.yaml"


def resolve_config_path(filename: str) -> Path:
    """Locate a config file

    Order: $CONFIG_DIR, ./config in the working directory, config/ next to
    the entry script, and finally ./config (left for the reader to fail on).
    """
    config_dir = os.getenv('CONFIG_DIR')
    if config_dir:
        return Path(config_dir) / filename

    cwd_candidate = Path.cwd() / "config" / filename
    if cwd_candidate.is_file():
        return cwd_candidate

    if sys.argv and sys.argv[0]:
        script_candidate = Path(sys.argv[0]).resolve().parent / "config" / filename
        if script_candidate.is_file():
            return script_candidate

    return Path(".") / "config" / filename


def load_yaml_file(path: Path, required: bool = False) -> Dict[str, Any]:
    """Read a YAML mapping; a missing optional file yields an empty dict"""
    if not path.is_file():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        logger.debug(f"Optional config file {path} not present")
        return {}

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to read config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def _app_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    overrides = {}
    if 'symbols' in data:
        overrides['symbols'] = data['symbols'] or []
    if 'dates' in data:
        overrides['dates'] = [str(d) for d in (data['dates'] or [])]
    settings_block = data.get('settings') or {}
    if settings_block.get('period'):
        overrides['period'] = settings_block['period']
    if settings_block.get('adjust_type'):
        overrides['adjust_type'] = settings_block['adjust_type']
    return overrides


def _db_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    db = data.get('db') or {}
    mapping = {
        'host': 'db_host',
        'port': 'db_port',
        'user': 'db_user',
        'password': 'db_password',
        'name': 'db_name',
        'sslmode': 'db_sslmode',
    }
    return {field: db[key] for key, field in mapping.items() if db.get(key) is not None}


def _longport_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    account = data.get('longport') or {}
    mapping = {
        'app_key': 'longport_app_key',
        'app_secret': 'longport_app_secret',
        'access_token': 'longport_access_token',
        'region': 'longport_region',
        'threads': 'workers',
        'rps': 'requests_per_second',
        'timeout_ms': 'timeout_ms',
    }
    return {field: account[key] for key, field in mapping.items() if account.get(key) is not None}


def load_settings(config_dir: Optional[str] = None) -> FetcherSettings:
    """Build FetcherSettings from the YAML files layered over the environment"""

    def locate(filename: str) -> Path:
        if config_dir:
            return Path(config_dir) / filename
        return resolve_config_path(filename)

    overrides: Dict[str, Any] = {}
    app_path = locate(APP_CONFIG_FILE)
    overrides.update(_app_overrides(load_yaml_file(app_path, required=True)))
    overrides.update(_db_overrides(load_yaml_file(locate(DB_CONFIG_FILE))))
    overrides.update(_longport_overrides(load_yaml_file(locate(LONGPORT_CONFIG_FILE))))

    try:
        settings = FetcherSettings(**overrides)
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    logger.info(f"Loaded configuration from {app_path.parent}")
    return settings
