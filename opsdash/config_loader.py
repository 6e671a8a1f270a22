#!/usr/bin/env python3
"""
Configuration Loader Module for the Ops Dashboard engine

Handles loading configuration from config.json and environment variables,
as well as loading mock scenarios from data/mock_scenarios/.
"""

import json
import logging
import os

logger = logging.getLogger(__name__)

# Compute project root directory (parent of opsdash/)
# This ensures paths work correctly regardless of where the script is run from
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Valid log level names (case-insensitive)
VALID_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')

# Time range presets accepted for default_time_range (see pagination.TIME_RANGE_PRESETS)
VALID_TIME_RANGES = ('12h', '1d', '7d', '15d', '30d')

DEFAULT_REQUEST_TIMEOUT_SEC = 30
DEFAULT_ITEMS_PER_PAGE = 50
DEFAULT_BUILD_LIMIT = 20


def get_log_level():
    """Get log level from environment variable LOG_LEVEL

    Returns:
        int: Logging level constant (e.g., logging.INFO)

    Environment Variables:
        LOG_LEVEL: One of DEBUG, INFO, WARNING, ERROR, CRITICAL (case-insensitive)
                   Defaults to INFO if not set or invalid
    """
    level_str = os.environ.get('LOG_LEVEL', 'INFO').upper()
    if level_str not in VALID_LOG_LEVELS:
        return logging.INFO
    return getattr(logging, level_str)


def configure_logging():
    """Configure logging with level from environment

    Returns:
        str: The configured log level name (e.g., 'INFO')
    """
    level = get_log_level()
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    return logging.getLevelName(level)


def parse_int_config(value, default, name):
    """Parse integer configuration value with error handling

    Args:
        value: Value to parse (string, int, or None)
        default: Default value if parsing fails
        name: Name of the config option for error messages

    Returns:
        int: Parsed integer value or default
    """
    try:
        return int(value)
    except (ValueError, TypeError):
        logger.warning(f"Invalid {name} value: {value}. Using default: {default}")
        return default


def parse_float_config(value, default, name):
    """Parse float configuration value with error handling

    Args:
        value: Value to parse (string, float, int, or None)
        default: Default value if parsing fails
        name: Name of the config option for error messages

    Returns:
        float: Parsed float value or default
    """
    try:
        return float(value)
    except (ValueError, TypeError):
        logger.warning(f"Invalid {name} value: {value}. Using default: {default}")
        return default


def parse_bool_config(value, default, name):
    """Parse boolean configuration value with error handling

    Args:
        value: Value to parse (string, bool, or None)
        default: Default value if parsing fails or value is None
        name: Name of the config option for error messages

    Returns:
        bool: Parsed boolean value or default
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ['true', '1', 'yes']
    logger.warning(f"Invalid {name} value: {value}. Using default: {default}")
    return default


def parse_csv_list(value):
    """Parse comma-separated list from environment variable

    Args:
        value: Comma-separated string (e.g., "release,hotfix")

    Returns:
        list: List of stripped, non-empty strings
    """
    if not value:
        return []
    return [item.strip() for item in value.split(',') if item.strip()]


def _env_or_config(config, env_name, key, default):
    """Return env var if set, else config.json value, else default"""
    if env_name in os.environ:
        return os.environ[env_name]
    return config.get(key, default)


def load_config():
    """Load configuration from config.json or environment variables

    Configuration is loaded with the following priority:
    1. Environment variables (highest priority)
    2. config.json (if exists)
    3. Built-in defaults (lowest priority)

    Returns:
        dict: Configuration dictionary with all settings
    """
    config = {}
    config_source = "environment variables"

    config_file = os.path.join(PROJECT_ROOT, 'config.json')
    if os.path.exists(config_file):
        try:
            with open(config_file, 'r') as f:
                config = json.load(f)
            config_source = "config.json"
            logger.info(f"Configuration loaded from {config_file}")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load {config_file}: {e}. Falling back to environment variables.")
            config = {}

    # Log level (environment variable takes precedence)
    if 'LOG_LEVEL' in os.environ:
        config['log_level'] = os.environ['LOG_LEVEL'].upper()
    elif 'log_level' in config:
        config['log_level'] = str(config['log_level']).upper()
    else:
        config['log_level'] = 'INFO'

    if config['log_level'] not in VALID_LOG_LEVELS:
        logger.warning(f"Invalid LOG_LEVEL '{config['log_level']}'. Using default: INFO")
        config['log_level'] = 'INFO'

    log_level = getattr(logging, config['log_level'])
    logging.getLogger().setLevel(log_level)
    logger.setLevel(log_level)

    # Backend connection and session context
    config['api_base_url'] = _env_or_config(config, 'OPSDASH_API_URL', 'api_base_url', 'http://localhost:3001/api')
    config['api_token'] = _env_or_config(config, 'OPSDASH_API_TOKEN', 'api_token', '')
    config['organization_id'] = _env_or_config(config, 'OPSDASH_ORGANIZATION_ID', 'organization_id', '')
    config['project'] = _env_or_config(config, 'OPSDASH_PROJECT', 'project', '')

    config['request_timeout_sec'] = parse_float_config(
        os.environ.get('REQUEST_TIMEOUT', config.get('request_timeout_sec', DEFAULT_REQUEST_TIMEOUT_SEC)),
        DEFAULT_REQUEST_TIMEOUT_SEC, 'REQUEST_TIMEOUT')
    config['items_per_page'] = parse_int_config(
        os.environ.get('ITEMS_PER_PAGE', config.get('items_per_page', DEFAULT_ITEMS_PER_PAGE)),
        DEFAULT_ITEMS_PER_PAGE, 'ITEMS_PER_PAGE')
    config['build_limit'] = parse_int_config(
        os.environ.get('BUILD_LIMIT', config.get('build_limit', DEFAULT_BUILD_LIMIT)),
        DEFAULT_BUILD_LIMIT, 'BUILD_LIMIT')
    config['default_time_range'] = str(_env_or_config(config, 'DEFAULT_TIME_RANGE', 'default_time_range', '1d'))

    # Durable user preferences (two boolean flags)
    config['preferences_path'] = _env_or_config(
        config, 'PREFERENCES_PATH', 'preferences_path',
        os.path.join(os.path.expanduser('~'), '.config', 'opsdash', 'preferences.json'))

    # For use_mock_data, check if env var is explicitly set to allow overriding
    if 'USE_MOCK_DATA' in os.environ:
        config['use_mock_data'] = parse_bool_config(os.environ['USE_MOCK_DATA'], False, 'USE_MOCK_DATA')
    else:
        config['use_mock_data'] = parse_bool_config(config.get('use_mock_data'), False, 'use_mock_data')

    config['mock_scenario'] = _env_or_config(config, 'MOCK_SCENARIO', 'mock_scenario', '')

    # Sources forced to fail in mock mode (e.g. "idle_pull_requests:500")
    if 'MOCK_FAILURES' in os.environ:
        config['mock_failures'] = parse_csv_list(os.environ['MOCK_FAILURES'])
    else:
        mock_failures = config.get('mock_failures', [])
        config['mock_failures'] = mock_failures if isinstance(mock_failures, list) else []

    # Log configuration (without secrets)
    logger.info(f"Configuration loaded from: {config_source}")
    logger.info(f"  Log level: {config['log_level']}")
    logger.info(f"  API URL: {config['api_base_url']}")
    logger.info(f"  Organization: {config['organization_id'] if config['organization_id'] else 'NOT SET'}")
    logger.info(f"  Project: {config['project'] if config['project'] else 'None (organization default)'}")
    logger.info(f"  Request timeout: {config['request_timeout_sec']}s")
    logger.info(f"  Items per page: {config['items_per_page']}")
    logger.info(f"  Build limit: {config['build_limit']}")
    logger.info(f"  Default time range: {config['default_time_range']}")
    logger.info(f"  Preferences: {config['preferences_path']}")
    logger.info(f"  Use mock data: {config['use_mock_data']}")
    if config['use_mock_data']:
        logger.info(f"  Mock scenario: {config['mock_scenario'] if config['mock_scenario'] else 'default (mock_data.json)'}")
    logger.info(f"  API token: {'***' if config['api_token'] else 'NOT SET'}")

    return config


def validate_config(config):
    """Validate configuration values and fail-fast if invalid

    Validates:
    - API token and organization must be provided if mock mode is disabled
    - request_timeout_sec must be a positive number
    - items_per_page and build_limit must be positive integers
    - default_time_range must be a known preset

    Args:
        config: Configuration dict from load_config()

    Returns:
        bool: True if configuration is valid, False otherwise

    Side effects:
        Logs error messages describing which key is invalid and how to fix it
    """
    is_valid = True

    if not config.get('use_mock_data', False):
        if not config.get('api_token'):
            logger.error("Configuration error: 'api_token' is required when mock mode is disabled")
            logger.error("  Fix: Set OPSDASH_API_TOKEN environment variable or add 'api_token' to config.json")
            is_valid = False
        if not config.get('organization_id'):
            logger.error("Configuration error: 'organization_id' is required when mock mode is disabled")
            logger.error("  Fix: Set OPSDASH_ORGANIZATION_ID environment variable or add 'organization_id' to config.json")
            is_valid = False

    timeout = config.get('request_timeout_sec')
    if timeout is None or isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        logger.error(f"Configuration error: 'request_timeout_sec' must be a positive number, got: {timeout}")
        logger.error("  Fix: Set REQUEST_TIMEOUT environment variable or 'request_timeout_sec' in config.json (default 30)")
        is_valid = False

    for key, env_name in (('items_per_page', 'ITEMS_PER_PAGE'), ('build_limit', 'BUILD_LIMIT')):
        value = config.get(key)
        if value is None or isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            logger.error(f"Configuration error: '{key}' must be a positive integer, got: {value}")
            logger.error(f"  Fix: Set {env_name} environment variable or '{key}' in config.json to a positive integer")
            is_valid = False

    time_range = config.get('default_time_range')
    if time_range not in VALID_TIME_RANGES:
        logger.error(f"Configuration error: 'default_time_range' must be one of {', '.join(VALID_TIME_RANGES)}, got: {time_range}")
        logger.error("  Fix: Set DEFAULT_TIME_RANGE environment variable or 'default_time_range' in config.json")
        is_valid = False

    if is_valid:
        logger.info("Configuration validation passed")
    else:
        logger.error("Configuration validation failed - see errors above")

    return is_valid


def load_mock_data(scenario=''):
    """Load mock data from mock_data.json file or a specific scenario file

    Args:
        scenario: Optional scenario name (e.g., 'healthy', 'failing').
                  If provided, loads from data/mock_scenarios/{scenario}.json
                  If empty, loads from mock_data.json in root directory.

    Returns:
        dict: Mock data with 'pull_requests', 'builds' and 'releases' keys
        None: If file not found or JSON parsing fails
    """
    if scenario:
        mock_data_file = os.path.join(PROJECT_ROOT, 'data', 'mock_scenarios', f'{scenario}.json')
    else:
        mock_data_file = os.path.join(PROJECT_ROOT, 'mock_data.json')

    if not os.path.exists(mock_data_file):
        logger.error(f"Mock data file not found: {mock_data_file}")
        if scenario:
            logger.error("Available scenarios: healthy, failing")
            logger.error("Check that the file exists in data/mock_scenarios/ directory")
        return None

    try:
        with open(mock_data_file, 'r') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse mock data JSON: {e}")
        return None
    except OSError as e:
        logger.error(f"Error loading mock data: {e}")
        return None

    required_keys = ['pull_requests', 'builds', 'releases']
    for key in required_keys:
        if key not in data:
            logger.error(f"Mock data file missing required key: {key}")
            return None

    logger.info(f"Successfully loaded mock data from {mock_data_file}")
    logger.info(f"  Pull requests: {len(data['pull_requests'])}")
    logger.info(f"  Builds: {len(data['builds'])}")
    logger.info(f"  Releases: {len(data['releases'])}")

    return data
