"""Configuration loading utilities."""

import json
import os
import stat
from pathlib import Path
from typing import Any

from loguru import logger

from morpheum.config.schema import Config


# Keys in the camelCase config that are considered secrets.
# Paths are relative to the root JSON object.
SECRET_PATHS: list[tuple[str, ...]] = [
    ("providers", "openai", "apiKey"),
    ("providers", "copilot", "apiKey"),
    ("matrix", "accessToken"),
    ("matrix", "password"),
]

# Mapping from config path → env var name written to .env
_ENV_MAP: dict[tuple[str, ...], str] = {
    ("providers", "openai", "apiKey"): "MORPHEUM_PROVIDERS__OPENAI__API_KEY",
    ("providers", "copilot", "apiKey"): "MORPHEUM_PROVIDERS__COPILOT__API_KEY",
    ("matrix", "accessToken"): "MORPHEUM_MATRIX__ACCESS_TOKEN",
    ("matrix", "password"): "MORPHEUM_MATRIX__PASSWORD",
}

# Plain environment variables understood for compatibility with existing
# deployments. They win over config.json and the .env file.
_ENV_TO_ATTR: dict[str, tuple[tuple[str, ...], type]] = {
    "OPENAI_API_KEY": (("providers", "openai", "api_key"), str),
    "OPENAI_MODEL": (("providers", "openai", "model"), str),
    "OPENAI_BASE_URL": (("providers", "openai", "base_url"), str),
    "OLLAMA_MODEL": (("providers", "ollama", "model"), str),
    "OLLAMA_API_URL": (("providers", "ollama", "base_url"), str),
    "GITHUB_TOKEN": (("providers", "copilot", "api_key"), str),
    "COPILOT_REPOSITORY": (("providers", "copilot", "repository"), str),
    "COPILOT_BASE_URL": (("providers", "copilot", "base_url"), str),
    "COPILOT_POLL_INTERVAL": (("providers", "copilot", "poll_interval"), float),
    "JAIL_HOST": (("sandbox", "host"), str),
    "JAIL_PORT": (("sandbox", "port"), int),
    "HOMESERVER_URL": (("matrix", "homeserver_url"), str),
    "ACCESS_TOKEN": (("matrix", "access_token"), str),
    "MATRIX_USERNAME": (("matrix", "username"), str),
    "MATRIX_PASSWORD": (("matrix", "password"), str),
}


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".morpheum" / "config.json"


def get_env_path() -> Path:
    """Get the default secrets .env file path."""
    return Path.home() / ".morpheum" / ".env"


def _lock_file(path: Path) -> None:
    """Set file permissions to 600 (owner read/write only)."""
    try:
        path.chmod(stat.S_IRUSR | stat.S_IWUSR)
    except OSError:
        pass  # Windows or restricted FS may not support this


def _load_dotenv(env_path: Path) -> dict[str, str]:
    """Parse a simple .env file into a dict (no shell expansion)."""
    values: dict[str, str] = {}
    if not env_path.exists():
        return values
    for line in env_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]
        values[key] = value
    return values


def _inject_env(env_path: Path) -> None:
    """Load .env values into os.environ (existing vars take precedence)."""
    for key, value in _load_dotenv(env_path).items():
        os.environ.setdefault(key, value)


def load_config(config_path: Path | None = None, env_path: Path | None = None) -> Config:
    """
    Load configuration from file + .env secrets + environment.

    Resolution order (highest priority wins):
      1. Plain variables such as OPENAI_API_KEY or GITHUB_TOKEN
      2. MORPHEUM_* environment variables (real environment, then .env)
      3. ~/.morpheum/config.json

    Args:
        config_path: Optional path to config file. Uses default if not provided.
        env_path: Optional path to the secrets file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()
    _inject_env(env_path or get_env_path())

    if path.exists():
        try:
            with open(path) as f:
                data = json.load(f)
            config = Config.model_validate(convert_keys(data))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}; using defaults")
            config = Config()
    else:
        config = Config()

    _apply_env_secrets(config)
    _apply_env_overrides(config)
    return config


def save_config(config: Config, config_path: Path | None = None, env_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Secrets are written to the .env file (mode 600) and stripped from
    config.json so that the JSON file contains no credentials.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = convert_to_camel(config.model_dump())

    secrets_path = env_path or get_env_path()
    _write_secrets_to_env(data, secrets_path)
    _strip_secrets(data)

    with open(path, "w") as f:
        json.dump(data, f, indent=2)

    _lock_file(path)
    _lock_file(secrets_path)


# ── Secret extraction helpers ──


def _get_nested(data: dict, keys: tuple[str, ...]) -> str:
    """Retrieve a nested value from a dict by key path, returning '' on miss."""
    current: Any = data
    for k in keys:
        if isinstance(current, dict):
            current = current.get(k, "")
        else:
            return ""
    return current if isinstance(current, str) else ""


def _set_nested(data: dict, keys: tuple[str, ...], value: str) -> None:
    """Set a nested value in a dict by key path."""
    current = data
    for k in keys[:-1]:
        if k not in current or not isinstance(current[k], dict):
            current[k] = {}
        current = current[k]
    current[keys[-1]] = value


def _write_secrets_to_env(data: dict, env_path: Path) -> None:
    """Extract secrets from camelCase config data and write to .env file."""
    existing = _load_dotenv(env_path) if env_path.exists() else {}

    for config_keys, env_var in _ENV_MAP.items():
        value = _get_nested(data, config_keys)
        if value:
            existing[env_var] = value

    env_path.parent.mkdir(parents=True, exist_ok=True)
    lines = [
        "# Morpheum secrets. Do not commit this file.",
        "",
    ]
    for key in sorted(existing):
        val = existing[key]
        if " " in val or '"' in val or "'" in val or "#" in val:
            val = '"' + val.replace("\\", "\\\\").replace('"', '\\"') + '"'
        lines.append(f"{key}={val}")
    lines.append("")
    env_path.write_text("\n".join(lines), encoding="utf-8")
    _lock_file(env_path)


def _strip_secrets(data: dict) -> None:
    """Remove secret values from camelCase config data (in-place)."""
    for config_keys in SECRET_PATHS:
        _set_nested(data, config_keys, "")


def _apply_env_secrets(config: Config) -> None:
    """Overlay the MORPHEUM_* secrets (from .env or the real environment).

    config.json holds blanks for these after save_config, and model_validate
    does not read the environment, so they are applied here.
    """
    for config_keys, env_var in _ENV_MAP.items():
        value = os.environ.get(env_var, "")
        if not value:
            continue
        obj: Any = config
        for part in config_keys[:-1]:
            obj = getattr(obj, camel_to_snake(part))
        setattr(obj, camel_to_snake(config_keys[-1]), value)


def _apply_env_overrides(config: Config) -> None:
    """Overlay plain environment variables onto the config object."""
    for env_var, (attr_path, cast) in _ENV_TO_ATTR.items():
        raw = os.environ.get(env_var, "")
        if not raw:
            continue
        try:
            value = cast(raw)
        except ValueError:
            logger.warning(f"Ignoring {env_var}={raw!r}: expected {cast.__name__}")
            continue

        obj: Any = config
        for part in attr_path[:-1]:
            obj = getattr(obj, part)
        setattr(obj, attr_path[-1], value)


# ── Key conversion helpers ──


def convert_keys(data: Any) -> Any:
    """Convert camelCase keys to snake_case for Pydantic."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        return {snake_to_camel(k): convert_to_camel(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
