"""Configuration loading from YAML files with environment variable support."""

import logging
import os
import re
from pathlib import Path
from typing import Any, Mapping

import yaml
from dotenv import dotenv_values

logger = logging.getLogger("poe-gateway")

MODELS_FILE_NAME = "models.yaml"

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def resolve_config_dir(config_dir: str | None = None) -> Path:
    """Resolve the configuration directory (CONFIG_DIR, default: cwd)."""
    raw = config_dir or os.getenv("CONFIG_DIR") or "./"
    return Path(raw).expanduser().resolve()


def load_env_values(env_path: Path) -> dict[str, str]:
    """Load environment values from a .env file without mutating os.environ."""
    if not env_path.exists():
        return {}
    raw_values = dotenv_values(env_path)
    return {key: value for key, value in raw_values.items() if value is not None}


def load_models_config(
    config_dir: str | Path | None = None,
    env_values: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load the model mapping file (models.yaml) from the config directory.

    A missing file is not an error: the gateway then runs with mapping
    disabled and forwards model names unchanged.

    Args:
        config_dir: Directory holding models.yaml. Defaults to CONFIG_DIR.
        env_values: Extra values for ${VAR} substitution, checked before
            os.environ.

    Returns:
        Parsed configuration dictionary.
    """
    directory = Path(config_dir) if config_dir else resolve_config_dir()
    config_path = directory / MODELS_FILE_NAME

    if not config_path.exists():
        logger.warning(f"Model mapping file not found at {config_path}; mapping disabled")
        return {}

    logger.info(f"Loading model mapping from {config_path}")
    with config_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}

    if not isinstance(data, dict):
        logger.error(f"Model mapping file {config_path} must contain a mapping")
        return {}

    return _substitute_env_vars(data, env_values)


def _substitute_env_vars(
    obj: Any, env_values: Mapping[str, str] | None = None
) -> Any:
    """Recursively substitute ${VAR_NAME} / $VAR_NAME in configuration values.

    Unset variables keep their literal placeholder and log a warning.
    """
    env_values = env_values or {}

    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v, env_values) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_substitute_env_vars(item, env_values) for item in obj]
    if isinstance(obj, str):

        def replace_var(match):
            var_name = match.group(1) or match.group(2)
            value = env_values.get(var_name)
            if value is None:
                value = os.getenv(var_name)
            if value is None:
                logger.warning(
                    f"CONFIG ERROR: Environment variable '${var_name}' is not set! "
                    f"The literal placeholder will be used."
                )
                return match.group(0)
            return value

        return _ENV_PATTERN.sub(replace_var, obj)
    return obj
