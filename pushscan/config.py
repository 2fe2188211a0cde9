import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from pushscan.errors import ConfigError

DEFAULT_CONFIG_FILE = "config.yml"


class GitHubSettings(BaseModel):
    webhook_secret: str = ""
    app_id: int = 0
    private_key: str = ""
    api_url: str = "https://api.github.com"


class ServerSettings(BaseModel):
    port: int = 8080


class ScanSettings(BaseModel):
    max_file_changes: int = 1000
    full_scan_timeout: float = 60.0


class LogSettings(BaseModel):
    level: str = "INFO"
    pretty: bool = False


class Settings(BaseModel):
    github: GitHubSettings = Field(default_factory=GitHubSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    scan: ScanSettings = Field(default_factory=ScanSettings)
    log: LogSettings = Field(default_factory=LogSettings)


def _read_secret(file_env: str, direct_env: str) -> str | None:
    path = os.environ.get(file_env)
    if path:
        try:
            return Path(path).read_text(encoding="utf-8").strip()
        except OSError as e:
            raise ConfigError(f"failed to read secret file {path}: {e}") from e
    value = os.environ.get(direct_env)
    return value or None


def _load_file(path: Path) -> dict:
    if not path.is_file():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse config file {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"failed to read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return data


def _apply_env(data: dict) -> None:
    for section_name in ("github", "server", "scan", "log"):
        if not isinstance(data.get(section_name), dict):
            data[section_name] = {}
    github, server, scan, log = data["github"], data["server"], data["scan"], data["log"]

    secret = _read_secret("GITHUB_WEBHOOK_SECRET_FILE", "GITHUB_WEBHOOK_SECRET")
    if secret:
        github["webhook_secret"] = secret
    key = _read_secret("GITHUB_PRIVATE_KEY_FILE", "GITHUB_PRIVATE_KEY")
    if key:
        github["private_key"] = key.replace("\\n", "\n")

    env_map = [
        ("GITHUB_APP_ID", github, "app_id"),
        ("GITHUB_API_URL", github, "api_url"),
        ("PORT", server, "port"),
        ("MAX_FILE_CHANGES", scan, "max_file_changes"),
        ("FULL_SCAN_TIMEOUT", scan, "full_scan_timeout"),
        ("LOG_LEVEL", log, "level"),
        ("LOG_PRETTY", log, "pretty"),
    ]
    for env_name, section, field in env_map:
        value = os.environ.get(env_name)
        if value:
            section[field] = value


def _validate(settings: Settings) -> None:
    if not settings.github.webhook_secret:
        raise ConfigError("GITHUB_WEBHOOK_SECRET is required")
    if not settings.github.app_id:
        raise ConfigError("GITHUB_APP_ID is required")
    if not settings.github.private_key:
        raise ConfigError("GITHUB_PRIVATE_KEY or GITHUB_PRIVATE_KEY_FILE is required")


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from .env, an optional YAML file and the environment.

    Environment variables win over the file. Raises ConfigError when a
    required value is missing or a source cannot be read.
    """
    load_dotenv(dotenv_path=".env", override=False)
    if config_path is None:
        config_path = Path(os.environ.get("PUSHSCAN_CONFIG", DEFAULT_CONFIG_FILE))
    data = _load_file(config_path)
    _apply_env(data)
    try:
        settings = Settings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e
    _validate(settings)
    return settings
