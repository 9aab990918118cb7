import json

import pytest

from morpheum.config.loader import _ENV_MAP, _ENV_TO_ATTR, camel_to_snake, load_config, save_config, snake_to_camel
from morpheum.config.schema import Config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    # setenv first so values injected from .env files are removed after each test
    for name in [*_ENV_TO_ATTR, *_ENV_MAP.values()]:
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)


def test_defaults_without_files(tmp_path) -> None:
    config = load_config(tmp_path / "missing.json", tmp_path / "missing.env")
    assert config.agents.defaults.max_iterations == 10
    assert config.sandbox.port == 10001
    assert config.get_provider_name() == "ollama"


def test_reads_camel_case_json(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "providers": {"openai": {"apiKey": "sk-file", "model": "gpt-4"}},
                "sandbox": {"jailDir": "/srv/jail"},
            }
        )
    )
    config = load_config(path, tmp_path / "missing.env")
    assert config.providers.openai.api_key == "sk-file"
    assert config.providers.openai.model == "gpt-4"
    assert config.sandbox.jail_dir == "/srv/jail"
    assert config.get_provider_name() == "openai"


def test_plain_environment_variables_win(tmp_path, monkeypatch) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"providers": {"openai": {"apiKey": "sk-file"}}}))
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    monkeypatch.setenv("JAIL_PORT", "10042")
    monkeypatch.setenv("COPILOT_POLL_INTERVAL", "2.5")

    config = load_config(path, tmp_path / "missing.env")
    assert config.providers.openai.api_key == "sk-env"
    assert config.sandbox.port == 10042
    assert config.providers.copilot.poll_interval == 2.5


def test_bad_numeric_variable_is_ignored(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("JAIL_PORT", "not-a-port")
    config = load_config(tmp_path / "missing.json", tmp_path / "missing.env")
    assert config.sandbox.port == 10001


def test_dotenv_supplies_plain_variables(tmp_path, monkeypatch) -> None:
    env = tmp_path / ".env"
    env.write_text('# secrets\nGITHUB_TOKEN="ghp_dotenv"\n')
    config = load_config(tmp_path / "missing.json", env)
    assert config.providers.copilot.api_key == "ghp_dotenv"


def test_invalid_json_falls_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json")
    config = load_config(path, tmp_path / "missing.env")
    assert config.providers.openai.api_key == ""


def test_save_moves_secrets_to_env_file(tmp_path) -> None:
    config = Config()
    config.providers.openai.api_key = "sk-secret"
    config.providers.copilot.api_key = "ghp secret"
    config.providers.copilot.repository = "acme/widgets"
    path = tmp_path / "config.json"
    env = tmp_path / ".env"

    save_config(config, path, env)

    data = json.loads(path.read_text())
    assert data["providers"]["openai"]["apiKey"] == ""
    assert data["providers"]["copilot"]["apiKey"] == ""
    assert data["providers"]["copilot"]["repository"] == "acme/widgets"
    text = env.read_text()
    assert "MORPHEUM_PROVIDERS__OPENAI__API_KEY=sk-secret" in text
    assert 'MORPHEUM_PROVIDERS__COPILOT__API_KEY="ghp secret"' in text


def test_key_conversion() -> None:
    assert camel_to_snake("sessionTimeout") == "session_timeout"
    assert snake_to_camel("sync_timeout_ms") == "syncTimeoutMs"


def test_saved_secrets_survive_reload(tmp_path) -> None:
    config = Config()
    config.providers.openai.api_key = "sk-secret"
    config.providers.copilot.api_key = "ghp_saved"
    config.matrix.access_token = "syt_token"
    config.matrix.homeserver_url = "https://hs.example.org"
    path = tmp_path / "config.json"
    env = tmp_path / ".env"

    save_config(config, path, env)
    loaded = load_config(path, env)

    assert loaded.providers.openai.api_key == "sk-secret"
    assert loaded.providers.copilot.api_key == "ghp_saved"
    assert loaded.matrix.access_token == "syt_token"
    assert loaded.matrix.homeserver_url == "https://hs.example.org"


def test_plain_variable_beats_saved_secret(tmp_path, monkeypatch) -> None:
    config = Config()
    config.providers.openai.api_key = "sk-saved"
    path = tmp_path / "config.json"
    env = tmp_path / ".env"
    save_config(config, path, env)

    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    assert load_config(path, env).providers.openai.api_key == "sk-env"
