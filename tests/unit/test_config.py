# tests/unit/test_config.py: Unit tests for settings loading from .env, YAML and the environment.

import pytest

from pushscan.config import load_settings
from pushscan.errors import ConfigError

ENV_VARS = (
    "GITHUB_WEBHOOK_SECRET",
    "GITHUB_WEBHOOK_SECRET_FILE",
    "GITHUB_APP_ID",
    "GITHUB_PRIVATE_KEY",
    "GITHUB_PRIVATE_KEY_FILE",
    "GITHUB_API_URL",
    "PORT",
    "MAX_FILE_CHANGES",
    "FULL_SCAN_TIMEOUT",
    "LOG_LEVEL",
    "LOG_PRETTY",
    "PUSHSCAN_CONFIG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def required_env(monkeypatch):
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", "whsec")
    monkeypatch.setenv("GITHUB_APP_ID", "12345")
    monkeypatch.setenv("GITHUB_PRIVATE_KEY", "-----BEGIN KEY-----\\nabc\\n-----END KEY-----")


def test_defaults_from_environment(required_env):
    settings = load_settings()
    assert settings.github.webhook_secret == "whsec"
    assert settings.github.app_id == 12345
    assert settings.github.api_url == "https://api.github.com"
    assert settings.server.port == 8080
    assert settings.scan.max_file_changes == 1000
    assert settings.scan.full_scan_timeout == 60.0
    assert settings.log.level == "INFO"
    assert settings.log.pretty is False


def test_private_key_newlines_are_expanded(required_env):
    settings = load_settings()
    assert settings.github.private_key == "-----BEGIN KEY-----\nabc\n-----END KEY-----"


@pytest.mark.parametrize(
    "missing,message",
    [
        ("GITHUB_WEBHOOK_SECRET", "GITHUB_WEBHOOK_SECRET is required"),
        ("GITHUB_APP_ID", "GITHUB_APP_ID is required"),
        ("GITHUB_PRIVATE_KEY", "GITHUB_PRIVATE_KEY or GITHUB_PRIVATE_KEY_FILE is required"),
    ],
)
def test_required_values(required_env, monkeypatch, missing, message):
    monkeypatch.delenv(missing)
    with pytest.raises(ConfigError, match=message):
        load_settings()


def test_secret_files_are_read(monkeypatch, tmp_path):
    (tmp_path / "secret.txt").write_text("from-file\n")
    (tmp_path / "key.pem").write_text("-----BEGIN KEY-----\nxyz\n-----END KEY-----\n")
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET_FILE", str(tmp_path / "secret.txt"))
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET", "ignored")
    monkeypatch.setenv("GITHUB_PRIVATE_KEY_FILE", str(tmp_path / "key.pem"))
    monkeypatch.setenv("GITHUB_APP_ID", "7")

    settings = load_settings()

    assert settings.github.webhook_secret == "from-file"
    assert settings.github.private_key == "-----BEGIN KEY-----\nxyz\n-----END KEY-----"


def test_unreadable_secret_file(required_env, monkeypatch, tmp_path):
    monkeypatch.setenv("GITHUB_WEBHOOK_SECRET_FILE", str(tmp_path / "nope.txt"))
    with pytest.raises(ConfigError, match="failed to read secret file"):
        load_settings()


def test_yaml_file_with_environment_override(required_env, monkeypatch, tmp_path):
    (tmp_path / "config.yml").write_text(
        "server:\n  port: 9000\nscan:\n  max_file_changes: 250\n  full_scan_timeout: 30\nlog:\n  level: DEBUG\n"
    )
    monkeypatch.setenv("PORT", "9100")

    settings = load_settings()

    assert settings.server.port == 9100
    assert settings.scan.max_file_changes == 250
    assert settings.scan.full_scan_timeout == 30.0
    assert settings.log.level == "DEBUG"


def test_yaml_file_can_hold_everything(monkeypatch, tmp_path):
    path = tmp_path / "custom.yml"
    path.write_text(
        "github:\n  webhook_secret: s\n  app_id: 9\n  private_key: k\n  api_url: https://ghe.example.com/api/v3\n"
        "server:\n"
    )
    monkeypatch.setenv("PUSHSCAN_CONFIG", str(path))

    settings = load_settings()

    assert settings.github.app_id == 9
    assert settings.github.api_url == "https://ghe.example.com/api/v3"
    assert settings.server.port == 8080


def test_dotenv_file_is_loaded(monkeypatch, tmp_path):
    (tmp_path / ".env").write_text("GITHUB_WEBHOOK_SECRET=dotenv\nGITHUB_APP_ID=3\nGITHUB_PRIVATE_KEY=k\n")
    # registered with monkeypatch so whatever .env loads is removed at teardown
    for name in ("GITHUB_WEBHOOK_SECRET", "GITHUB_APP_ID", "GITHUB_PRIVATE_KEY"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)

    settings = load_settings()

    assert settings.github.webhook_secret == "dotenv"
    assert settings.github.app_id == 3


def test_invalid_yaml(required_env, tmp_path):
    (tmp_path / "config.yml").write_text("server: [unclosed\n")
    with pytest.raises(ConfigError, match="failed to parse config file"):
        load_settings()


def test_yaml_must_be_a_mapping(required_env, tmp_path):
    (tmp_path / "config.yml").write_text("- just\n- a list\n")
    with pytest.raises(ConfigError, match="must contain a mapping"):
        load_settings()


def test_invalid_value_type(required_env, monkeypatch):
    monkeypatch.setenv("PORT", "not-a-port")
    with pytest.raises(ConfigError, match="invalid configuration"):
        load_settings()


@pytest.mark.parametrize("value,pretty", [("1", True), ("true", True), ("yes", True), ("0", False), ("false", False)])
def test_log_pretty_flag(required_env, monkeypatch, value, pretty):
    monkeypatch.setenv("LOG_PRETTY", value)
    assert load_settings().log.pretty is pretty


def test_log_pretty_rejects_garbage(required_env, monkeypatch):
    monkeypatch.setenv("LOG_PRETTY", "sometimes")
    with pytest.raises(ConfigError, match="invalid configuration"):
        load_settings()
