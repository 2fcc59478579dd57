from chat_core.config.credentials import credential_env_name, resolve_credential
from chat_core.config.env_utils import read_env_file
from chat_core.providers.deepseek_client import DeepSeekClient


class SettingsStub:
    http_timeout = 1.0
    deepseek_base_url = "https://api.deepseek.test/v1"


def test_env_name():
    assert credential_env_name("deepseek") == "DEEPSEEK_API_KEY"


def test_resolve_from_environment(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DEEPSEEK_API_KEY", " sk-env ")
    assert resolve_credential("deepseek") == "sk-env"
    monkeypatch.setenv("DEEPSEEK_API_KEY", "   ")
    assert resolve_credential("deepseek") is None


def test_resolve_from_env_file(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DEEPSEEK_API_KEY", raising=False)
    assert resolve_credential("deepseek") is None
    (tmp_path / ".env").write_text("# local\nDEEPSEEK_API_KEY=\"sk-file\"\nOTHER=1\n", encoding="utf-8")
    assert read_env_file()["OTHER"] == "1"
    assert resolve_credential("deepseek") == "sk-file"


def test_adapter_sees_rotated_credentials(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DEEPSEEK_API_KEY", raising=False)
    client = DeepSeekClient(SettingsStub())
    assert client.is_configured() is False
    monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-rotated")
    assert client.is_configured() is True
    monkeypatch.delenv("DEEPSEEK_API_KEY")
    assert client.is_configured() is False
