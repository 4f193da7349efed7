import pytest

from backstop import ApiClient, load_settings_from_env


def test_settings_from_env_and_dotenv(monkeypatch, tmp_path):
    envp = tmp_path / ".env"
    envp.write_text(
        "# backstop settings\n"
        "export T1_BASE_URL='https://file.test'\n"
        "T1_MAX_RETRIES=5\n"
        'T1_AUTH_SCHEME="Token"\n'
        "T1_BASE_DELAY=\n"
        "not a setting\n"
    )
    monkeypatch.setenv("T1_BASE_URL", "https://env.test")
    monkeypatch.setenv("T1_TIMEOUT", "2.5")

    settings = load_settings_from_env(prefix="T1_", env_path=str(envp))

    assert settings == {
        "base_url": "https://env.test",
        "timeout": 2.5,
        "max_retries": 5,
        "auth_scheme": "Token",
    }


def test_missing_env_file_is_ignored(monkeypatch, tmp_path):
    monkeypatch.setenv("T2_NAMESPACE", "tenant")
    settings = load_settings_from_env(prefix="T2_", env_path=str(tmp_path / "nope.env"))
    assert settings == {"namespace": "tenant"}


def test_invalid_number_names_the_variable(monkeypatch):
    monkeypatch.setenv("T3_MAX_RETRIES", "three")
    with pytest.raises(ValueError, match="T3_MAX_RETRIES"):
        load_settings_from_env(prefix="T3_")


def test_client_from_env_kwargs_win(monkeypatch):
    monkeypatch.setenv("T4_BASE_URL", "https://api.env/")
    monkeypatch.setenv("T4_MAX_RETRIES", "1")
    monkeypatch.setenv("T4_CSRF_HEADER", "X-XSRF")
    client = ApiClient.from_env(prefix="T4_", max_retries=7)
    assert client.base_url == "https://api.env"
    assert client.retry_config.max_retries == 7  # noqa: PLR2004
    assert client.auth_config.csrf_header == "X-XSRF"
