import httpx
import pytest

from chat_core.domain.exceptions import (
    AuthenticationError,
    ConfigurationError,
    PermissionDeniedError,
    ProviderError,
    RateLimitedError,
    ServiceUnavailableError,
    ValidationError,
)
from chat_core.domain.models import ChatMessage, ChatRequest, RoleConfig
from chat_core.providers.deepseek_client import DeepSeekClient


class SettingsStub:
    http_timeout = 1.0
    deepseek_base_url = "https://api.deepseek.test/v1"


def make_client(key="sk-test"):
    return DeepSeekClient(SettingsStub(), credential_resolver=lambda name: key)


class Resp:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def install_client(monkeypatch, post=None, get=None, calls=None):
    calls = calls if calls is not None else []

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None, **_):
            calls.append(("POST", url, json, headers))
            return post() if callable(post) else post

        def get(self, url, headers=None, **_):
            calls.append(("GET", url, None, headers))
            return get() if callable(get) else get

    monkeypatch.setattr("httpx.Client", Client)
    return calls


def hello_request(**kw):
    return ChatRequest(messages=[ChatMessage(role="user", content="Hello")], **kw)


def test_send_message_parses_response(monkeypatch):
    calls = install_client(
        monkeypatch,
        post=Resp(
            payload={
                "model": "deepseek-chat",
                "choices": [{"message": {"role": "assistant", "content": "Hi there"}, "finish_reason": "stop"}],
                "usage": {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
            }
        ),
    )
    res = make_client().send_message(hello_request())

    assert res.message == "Hi there"
    assert res.model == "deepseek-chat"
    assert res.token_count == 5
    assert res.finish_reason == "stop"
    assert res.metadata["provider"] == "deepseek"
    assert res.metadata["usage"]["total_tokens"] == 5

    method, url, payload, headers = calls[0]
    assert method == "POST"
    assert url == "https://api.deepseek.test/v1/chat/completions"
    assert headers["Authorization"] == "Bearer sk-test"
    assert payload == {
        "model": "deepseek-chat",
        "messages": [{"role": "user", "content": "Hello"}],
        "temperature": 0.7,
        "max_tokens": 1000,
        "stream": False,
    }


def test_send_message_prepends_role_system_prompt(monkeypatch):
    calls = install_client(
        monkeypatch,
        post=Resp(payload={"choices": [{"message": {"content": "ok"}, "finish_reason": "stop"}]}),
    )
    req = ChatRequest(
        messages=[
            ChatMessage(role="user", content="a"),
            ChatMessage(role="assistant", content="b"),
            ChatMessage(role="user", content="c"),
        ],
        model="deepseek-coder",
        role_config=RoleConfig(name="programmer", system_prompt="Be terse", temperature=0.2, max_tokens=50),
    )
    make_client().send_message(req)

    payload = calls[0][2]
    assert payload["model"] == "deepseek-coder"
    assert payload["messages"] == [
        {"role": "system", "content": "Be terse"},
        {"role": "user", "content": "a"},
        {"role": "assistant", "content": "b"},
        {"role": "user", "content": "c"},
    ]
    assert payload["temperature"] == 0.2
    assert payload["max_tokens"] == 50


def test_send_message_estimates_tokens_without_usage(monkeypatch):
    install_client(
        monkeypatch,
        post=Resp(payload={"choices": [{"message": {"content": "abcdefghi"}, "finish_reason": "length"}]}),
    )
    res = make_client().send_message(hello_request(model="m1"))
    assert res.token_count == 3
    assert res.model == "m1"
    assert res.finish_reason == "length"


@pytest.mark.parametrize(
    "req",
    [
        ChatRequest(messages=[]),
        hello_request(temperature=-0.1),
        hello_request(temperature=2.5),
        hello_request(max_tokens=0),
    ],
)
def test_send_message_validates_before_io(monkeypatch, req):
    calls = install_client(monkeypatch, post=Resp(payload={}))
    with pytest.raises(ValidationError):
        make_client().send_message(req)
    assert calls == []


def test_send_message_requires_credentials(monkeypatch):
    calls = install_client(monkeypatch, post=Resp(payload={}))
    client = make_client(key=None)
    assert client.is_configured() is False
    with pytest.raises(ConfigurationError):
        client.send_message(hello_request())
    assert calls == []


def test_configuration_is_rechecked_every_call():
    keys = iter([None, "sk-new", ""])
    client = DeepSeekClient(SettingsStub(), credential_resolver=lambda name: next(keys))
    assert client.is_configured() is False
    assert client.is_configured() is True
    assert client.is_configured() is False


@pytest.mark.parametrize("attempt,delay", [(0, 1000), (1, 2000), (2, 4000)])
def test_rate_limit_is_retryable_with_backoff(monkeypatch, attempt, delay):
    install_client(monkeypatch, post=Resp(status_code=429, text="Too Many Requests"))
    with pytest.raises(RateLimitedError) as exc_info:
        make_client().send_message(hello_request(), attempt=attempt)
    assert exc_info.value.retryable is True
    assert exc_info.value.delay_ms == delay
    assert exc_info.value.status == 429


def test_rate_limit_fails_outright_on_fourth_attempt(monkeypatch):
    install_client(monkeypatch, post=Resp(status_code=429, text="Too Many Requests"))
    with pytest.raises(RateLimitedError) as exc_info:
        make_client().send_message(hello_request(), attempt=3)
    assert exc_info.value.retryable is False
    assert exc_info.value.delay_ms == 0


@pytest.mark.parametrize("attempt", [0, 1, 5])
def test_unauthorized_is_never_retryable(monkeypatch, attempt):
    install_client(monkeypatch, post=Resp(status_code=401, text="Unauthorized"))
    with pytest.raises(AuthenticationError) as exc_info:
        make_client().send_message(hello_request(), attempt=attempt)
    assert exc_info.value.retryable is False


@pytest.mark.parametrize(
    "status,error_cls",
    [(403, PermissionDeniedError), (500, ServiceUnavailableError), (503, ServiceUnavailableError), (404, ProviderError)],
)
def test_http_errors_are_classified(monkeypatch, status, error_cls):
    install_client(monkeypatch, post=Resp(status_code=status, text="boom"))
    with pytest.raises(error_cls) as exc_info:
        make_client().send_message(hello_request())
    assert exc_info.value.status == status
    assert exc_info.value.retryable is False


def test_transport_error_becomes_provider_error(monkeypatch):
    def boom():
        raise httpx.ConnectError("connection refused")

    install_client(monkeypatch, post=boom)
    with pytest.raises(ProviderError) as exc_info:
        make_client().send_message(hello_request())
    assert exc_info.value.status is None
    assert exc_info.value.code == "NETWORK_ERROR"


def test_response_without_choices_is_provider_error(monkeypatch):
    install_client(monkeypatch, post=Resp(payload={"choices": []}))
    with pytest.raises(ProviderError):
        make_client().send_message(hello_request())


def test_get_models_maps_context_windows(monkeypatch):
    calls = install_client(
        monkeypatch,
        get=Resp(payload={"data": [{"id": "deepseek-chat", "object": "model"}, {"id": "mystery", "object": "model"}]}),
    )
    models = make_client().get_models()
    assert calls[0][1] == "https://api.deepseek.test/v1/models"
    assert [(m.id, m.context_window) for m in models] == [("deepseek-chat", 32768), ("mystery", 4096)]
    assert all(m.provider == "deepseek" for m in models)


def test_get_models_falls_back_on_transport_failure(monkeypatch):
    def boom():
        raise httpx.ConnectTimeout("timed out")

    install_client(monkeypatch, get=boom)
    models = make_client().get_models()
    assert len(models) >= 1
    assert models[0].id == "deepseek-chat"


@pytest.mark.parametrize("resp", [Resp(status_code=502, text="bad gateway"), Resp(payload={"data": []}), Resp()])
def test_get_models_falls_back_on_bad_responses(monkeypatch, resp):
    install_client(monkeypatch, get=resp)
    models = make_client().get_models()
    assert {m.id for m in models} == {"deepseek-chat", "deepseek-coder"}


def test_rate_limit_info_and_name():
    client = make_client()
    info = client.get_rate_limit_info()
    assert client.get_provider_name() == "deepseek"
    assert info.requests_per_minute == 60
    assert info.requests_per_hour == 1000


def test_default_model_comes_from_settings(monkeypatch):
    class ReasonerSettings(SettingsStub):
        default_model = "deepseek-reasoner"

    calls = install_client(
        monkeypatch,
        post=Resp(payload={"choices": [{"message": {"content": "ok"}, "finish_reason": "stop"}]}),
    )
    client = DeepSeekClient(ReasonerSettings(), credential_resolver=lambda name: "sk-test")
    res = client.send_message(hello_request())

    assert calls[0][2]["model"] == "deepseek-reasoner"
    assert res.model == "deepseek-reasoner"
    assert client.get_default_model() == "deepseek-reasoner"
    assert make_client().get_default_model() == "deepseek-chat"


@pytest.mark.parametrize(
    "role_config",
    [
        RoleConfig(name="hot", system_prompt="sys", temperature=5.0),
        RoleConfig(name="mute", system_prompt="sys", max_tokens=0),
    ],
)
def test_role_generation_params_are_validated_before_io(monkeypatch, role_config):
    calls = install_client(monkeypatch, post=Resp(payload={}))
    with pytest.raises(ValidationError):
        make_client().send_message(hello_request(role_config=role_config))
    assert calls == []


@pytest.mark.parametrize(
    "payload",
    [
        {"choices": [{"message": "not-an-object"}]},
        {"choices": [{"message": {"content": "hi"}}], "usage": ["not", "an", "object"]},
        {"choices": [{"message": {"content": "hi"}}], "usage": {"total_tokens": "many"}},
        {"choices": ["not-an-object"]},
        {"choices": "not-a-list"},
    ],
)
def test_malformed_success_body_is_provider_error(monkeypatch, payload):
    install_client(monkeypatch, post=Resp(payload=payload))
    with pytest.raises(ProviderError) as exc_info:
        make_client().send_message(hello_request())
    assert exc_info.value.code == "INVALID_RESPONSE"
