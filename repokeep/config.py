#!/usr/bin/env python3

import os
import json
import tomllib
from pathlib import Path

import logging
import sys

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stderr) # Default to stderr
    ]
)
logger = logging.getLogger("repokeep")

# Name of the per-workspace configuration file at the workspace root
WORKSPACE_CONFIG = "repokeep.toml"

# Directory holding workspace state (changes, sets, lock)
STATE_DIR = ".repokeep"


def get_config_path():
    """Get the path to the user configuration file.

    Checks in order:
    1. REPOKEEP_CONFIG environment variable
    2. ~/.repokeep/ directory
    """
    if 'REPOKEEP_CONFIG' in os.environ:
        path = Path(os.environ['REPOKEEP_CONFIG'])
        if path.exists():
            return path

    repokeep_dir = Path.home() / '.repokeep'
    for filename in ['config.json', 'config.toml', 'config.yaml', 'config.yml']:
        path = repokeep_dir / filename
        if path.exists() and path.stat().st_size > 10:  # Not empty/trivial
            return path

    # If no file exists, return default path for saving
    return repokeep_dir / 'config.json'


def _read_config_file(config_path: Path) -> dict:
    suffix = config_path.suffix.lower()
    if suffix == '.toml':
        with open(config_path, 'rb') as f:
            return tomllib.load(f)
    if suffix in ('.yaml', '.yml'):
        import yaml
        with open(config_path, 'r') as f:
            return yaml.safe_load(f) or {}
    with open(config_path, 'r') as f:
        return json.load(f)


def load_config():
    """Load configuration from file."""
    config_path = get_config_path()

    # Start with default config
    config = get_default_config()

    if config_path.exists():
        try:
            file_config = _read_config_file(config_path)
            config = merge_configs(config, file_config)
        except Exception as e:
            logger.error(f"Error loading config from {config_path}: {e}")

    # Apply environment variable overrides
    config = apply_env_overrides(config)

    return config


def save_config(config):
    """Save configuration to file."""
    config_path = get_config_path()

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)

        if config_path.suffix.lower() in ['.toml']:
            # tomllib is read-only
            import toml
            with open(config_path, 'w') as f:
                toml.dump(config, f)
        elif config_path.suffix.lower() in ['.yaml', '.yml']:
            import yaml
            with open(config_path, 'w') as f:
                yaml.safe_dump(config, f, default_flow_style=False)
        else:
            with open(config_path, 'w') as f:
                json.dump(config, f, indent=2)

        logger.info(f"Configuration saved to {config_path}")
    except Exception as e:
        logger.error(f"Error saving config to {config_path}: {e}")


def get_default_config():
    """Get default configuration."""
    return {
        "general": {
            "parallelism": 4,
        },
        "staging": {
            "path": f"{STATE_DIR}/changes.gz",
        },
        "sets": {
            "directory": f"{STATE_DIR}/sets",
            "retain": 3,
        },
        "version": {
            "prefixes": ["v"],
            "target": "text",
        },
        "logging": {
            "level": "INFO",
        },
    }


def load_workspace_config(root):
    """
    Load the per-workspace ``repokeep.toml`` from the workspace root.

    Recognized tables:
        [variables]            default bindings for version specifications
        [repos."path/to/repo"] repo-local overrides

    Returns:
        dict with 'variables' and 'repos' keys (empty when the file is absent)
    """
    path = Path(root) / WORKSPACE_CONFIG
    result = {"variables": {}, "repos": {}}

    if not path.is_file():
        return result

    try:
        with open(path, 'rb') as f:
            data = tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as e:
        from .exit_codes import ConfigError
        raise ConfigError(f"{path}: {e}")

    variables = data.get("variables", {})
    if isinstance(variables, dict):
        result["variables"] = {str(k): ("" if v is None else str(v)) for k, v in variables.items()}

    repos = data.get("repos", {})
    if isinstance(repos, dict):
        result["repos"] = {str(k): dict(v) for k, v in repos.items() if isinstance(v, dict)}

    return result


def find_workspace_root(start=None):
    """
    Walk up from ``start`` and return the outermost directory holding a
    ``repokeep.toml``, or None when there is none.
    """
    current = Path(start or os.getcwd()).resolve()
    found = None

    for candidate in [current, *current.parents]:
        if (candidate / WORKSPACE_CONFIG).is_file():
            found = candidate

    return found


def merge_configs(base_config, override_config):
    """
    Recursively merge two configuration dictionaries.

    Args:
        base_config (dict): Base configuration
        override_config (dict): Configuration to merge/override with

    Returns:
        dict: Merged configuration
    """
    merged = base_config.copy()

    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value

    return merged


def apply_env_overrides(config):
    """
    Apply environment variable overrides to configuration.
    Environment variables follow the pattern: REPOKEEP_SECTION_KEY
    For example: REPOKEEP_GENERAL_PARALLELISM=8
    """
    env_prefix = "REPOKEEP_"

    for env_key, value in os.environ.items():
        if not env_key.startswith(env_prefix) or env_key == "REPOKEEP_CONFIG":
            continue

        key_parts = env_key[len(env_prefix):].lower().split('_')

        # Convert value
        if value.lower() in ('true', 'yes', 'on'):
            typed_value = True
        elif value.lower() in ('false', 'no', 'off'):
            typed_value = False
        elif value.isdigit():
            typed_value = int(value)
        else:
            typed_value = value

        current_level = config
        i = 0
        while i < len(key_parts):
            # Find the longest key in current_level that is a prefix of the remaining key_parts
            best_match_len = 0
            matched_key = None

            for config_key in current_level.keys():
                config_key_parts_from_key = config_key.split('_')
                if key_parts[i : i + len(config_key_parts_from_key)] == config_key_parts_from_key:
                    if len(config_key_parts_from_key) > best_match_len:
                        best_match_len = len(config_key_parts_from_key)
                        matched_key = config_key

            if matched_key:
                if i + best_match_len == len(key_parts):
                    current_level[matched_key] = typed_value
                    break

                if isinstance(current_level[matched_key], dict):
                    current_level = current_level[matched_key]
                    i += best_match_len
                else:
                    # Path conflict, e.g., env var is longer but we found a non-dict value
                    break
            else:
                break

    return config


def set_log_level(level):
    """Set the level of the repokeep logger hierarchy (name or int)."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)
