# hybrid_users/config.py
# Description: Configuration management for the hybrid_users application.
#
# Settings come from three layers, later ones winning:
#   1. CONFIG_TOML_CONTENT below (also written out as the user's file on first run)
#   2. ~/.config/hybrid_users/config.toml (or an explicit path)
#   3. HYBRID_USERS_* environment variables for the handful of values worth overriding per run
#
# Imports
import copy
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional, Union
#
# Third-Party Imports
import toml
from loguru import logger
#
#######################################################################################################################
#
# Functions:

# --- Constants ---
# Client ID stamped on every row this installation writes
CLI_APP_CLIENT_ID = "hybrid_users_local_instance_v1"

# --- Path to the configuration file ---
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "hybrid_users" / "config.toml"
BASE_DATA_DIR = Path.home() / ".local" / "share" / "hybrid_users"

# --- Environment overrides: variable -> (section, key) ---
ENV_OVERRIDES = {
    "HYBRID_USERS_API_URL": ("remote", "base_url"),
    "HYBRID_USERS_DB_PATH": ("database", "users_db_path"),
    "HYBRID_USERS_LOG_LEVEL": ("general", "log_level"),
}

CONFIG_TOML_CONTENT = """
# Configuration for hybrid_users
[general]
log_level = "INFO" # Console Log Level: DEBUG, INFO, WARNING, ERROR, CRITICAL

[logging]
# Log file will be placed in the same directory as the users database
log_filename = "hybrid_users.log"
file_log_level = "INFO" # File Log Level: DEBUG, INFO, WARNING, ERROR, CRITICAL
log_max_bytes = 10485760 # 10 MB
log_backup_count = 5

[database]
users_db_path = "~/.local/share/hybrid_users/users.db"
client_id = "hybrid_users_local_instance_v1"

[remote]
# Base URL of the user service; the collection lives at <base_url>/<resource>
base_url = "https://692602c626e7e41498f90a61.mockapi.io/api/wirtz"
resource = "users"
timeout = 30.0 # Seconds

[sync]
# Ids starting with this prefix were minted locally and have never been created remotely
local_id_prefix = "local_"
interval_seconds = 300 # Used by `run.py watch`
initial_delay_seconds = 0
"""

try:
    DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)
except tomllib.TOMLDecodeError as e:
    logger.critical(f"FATAL: Could not parse internal CONFIG_TOML_CONTENT: {e}. Application cannot start correctly.")
    DEFAULT_CONFIG_FROM_TOML = {}


# --- Helper for deep merging dictionaries ---
def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update_dict into base_dict."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _get_typed_value(data_dict: Dict, key: str, default: Any, target_type: type = str) -> Any:
    """Helper to get value from dict and cast to type, with logging for type errors."""
    value = data_dict.get(key, default)
    if value is default and default is not None:
        return value
    if value is None:
        return None

    try:
        if target_type == bool:
            if isinstance(value, bool):
                return value
            return str(value).lower() in ['true', '1', 't', 'y', 'yes']
        if target_type == Path:
            return Path(value).expanduser() if value else default
        return target_type(value)
    except (ValueError, TypeError) as e:
        logger.warning(f"Config key '{key}' has value '{value}' which could not be converted to {target_type}. "
                       f"Using default: '{default}'. Error: {e}")
        return default


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    for env_var, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value:
            config.setdefault(section, {})[key] = value
            logger.debug(f"Config [{section}] {key} overridden by ${env_var}")
    return config


# --- Primary Configuration Loading Logic ---
_CONFIG_CACHE: Optional[Dict[str, Any]] = None
_CONFIG_CACHE_PATH: Optional[Path] = None


def load_settings(force_reload: bool = False, config_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Loads settings from ~/.config/hybrid_users/config.toml (or `config_path`).
    If the file doesn't exist, it's created with default values.
    """
    global _CONFIG_CACHE, _CONFIG_CACHE_PATH
    path = Path(config_path).expanduser() if config_path else DEFAULT_CONFIG_PATH
    if _CONFIG_CACHE is not None and not force_reload and _CONFIG_CACHE_PATH == path:
        return _CONFIG_CACHE

    # Start with the programmatic defaults defined in CONFIG_TOML_CONTENT
    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)

    if not path.exists():
        logger.info(f"Config file not found at {path}. Creating with default values.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                # Write the default TOML content, not the parsed dictionary, to keep the comments
                f.write(CONFIG_TOML_CONTENT)
            logger.info(f"Created default config file at {path}")
        except OSError as e:
            logger.error(f"Could not create default config file {path}: {e}. Using internal defaults.")
    else:
        logger.info(f"Attempting to load config from: {path}")
        try:
            with open(path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
            logger.info(f"Successfully loaded and merged config from {path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {path}: {e}. Using internal defaults.")

    _CONFIG_CACHE = _apply_env_overrides(loaded_config)
    _CONFIG_CACHE_PATH = path
    logger.debug(f"load_settings returning config with top-level keys: {list(loaded_config.keys())}")
    return _CONFIG_CACHE


def write_default_config(path: Union[str, Path], overrides: Optional[Dict[str, Any]] = None) -> Path:
    """Writes the defaults (optionally merged with `overrides`) to `path` as TOML."""
    target = Path(path).expanduser()
    data = deep_merge_dicts(DEFAULT_CONFIG_FROM_TOML, overrides or {})
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w", encoding="utf-8") as f:
        toml.dump(data, f)
    logger.info(f"Wrote config file to {target}")
    return target


# --- Setting Getter ---
def get_cli_setting(section: str, key: str, default: Any = None) -> Any:
    """Helper to get a specific setting from the loaded configuration."""
    config = load_settings(config_path=_CONFIG_CACHE_PATH)
    section_data = config.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


def _default(section: str, key: str, fallback: Any) -> Any:
    return DEFAULT_CONFIG_FROM_TOML.get(section, {}).get(key, fallback)


# --- Typed Getters ---
def get_users_db_path() -> Path:
    default_db_path_str = _default("database", "users_db_path", str(BASE_DATA_DIR / "users.db"))
    db_path_str = str(get_cli_setting("database", "users_db_path", default_db_path_str))
    if db_path_str == ":memory:":
        return Path(db_path_str)
    return Path(db_path_str).expanduser().resolve()


def get_client_id() -> str:
    return str(get_cli_setting("database", "client_id", CLI_APP_CLIENT_ID)) or CLI_APP_CLIENT_ID


def get_log_file_path() -> Path:
    db_path = get_users_db_path()
    parent_dir = BASE_DATA_DIR if str(db_path) == ":memory:" else db_path.parent
    log_filename = get_cli_setting("logging", "log_filename", _default("logging", "log_filename", "hybrid_users.log"))
    log_file_path = parent_dir / log_filename
    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Could not create log directory {log_file_path.parent}: {e}")
    return log_file_path


def get_remote_settings() -> Dict[str, Any]:
    section = load_settings(config_path=_CONFIG_CACHE_PATH).get("remote", {})
    return {
        "base_url": str(_get_typed_value(section, "base_url", _default("remote", "base_url", ""), str)),
        "resource": str(_get_typed_value(section, "resource", "users", str)),
        "timeout": _get_typed_value(section, "timeout", 30.0, float),
    }


def get_sync_settings() -> Dict[str, Any]:
    section = load_settings(config_path=_CONFIG_CACHE_PATH).get("sync", {})
    return {
        "local_id_prefix": str(_get_typed_value(section, "local_id_prefix", "local_", str)) or "local_",
        "interval_seconds": _get_typed_value(section, "interval_seconds", 300.0, float),
        "initial_delay_seconds": _get_typed_value(section, "initial_delay_seconds", 0.0, float),
    }


def get_logging_settings() -> Dict[str, Any]:
    config = load_settings(config_path=_CONFIG_CACHE_PATH)
    general = config.get("general", {})
    logging_section = config.get("logging", {})
    return {
        "log_level": str(_get_typed_value(general, "log_level", "INFO", str)).upper(),
        "file_log_level": str(_get_typed_value(logging_section, "file_log_level", "INFO", str)).upper(),
        "log_max_bytes": _get_typed_value(logging_section, "log_max_bytes", 10485760, int),
        "log_backup_count": _get_typed_value(logging_section, "log_backup_count", 5, int),
    }

#
# End of hybrid_users/config.py
#######################################################################################################################
