"""测试对外服务函数的装配与序列化。"""

import pytest

from chat_core.api import service
from chat_core.domain.models import ChatResponse, ModelInfo, RateLimitInfo


class FakeProvider:
    name = "fake"

    def send_message(self, request, attempt=0):
        return ChatResponse(message="Hi there", model="m1", token_count=5, finish_reason="stop", metadata={})

    def get_models(self):
        return [ModelInfo(id="m1", name="M1", provider="fake", context_window=4096, supports_streaming=True)]

    def get_provider_name(self):
        return "fake"

    def is_configured(self):
        return True

    def get_rate_limit_info(self):
        return RateLimitInfo(requests_per_minute=1, requests_per_hour=1)


@pytest.fixture
def wired(monkeypatch, tmp_path):
    class SettingsStub:
        storage_root = str(tmp_path / ".storage")
        max_context_messages = 20
        rate_limit_max_retries = 3
        history_page_size = 50
        title_max_length = 50

    monkeypatch.setattr(service, "settings", SettingsStub())
    monkeypatch.setattr(service, "create_provider", lambda: FakeProvider())
    service.reset_defaults()
    yield
    service.reset_defaults()


def test_send_message_returns_envelope(wired):
    out = service.send_message("u1", "Hello", metadata={"source": "web"})
    assert out["message"]["role"] == "assistant"
    assert out["message"]["content"] == "Hi there"
    assert out["message"]["token_count"] == 5
    assert out["message"]["model_used"] == "m1"
    assert out["conversation_id"]
    assert out["session_id"]

    history = service.get_conversation_history(out["conversation_id"])
    assert [m["content"] for m in history["messages"]] == ["Hello", "Hi there"]
    assert history["messages"][0]["metadata"] == {"source": "web"}
    assert history["pagination"] == {"page": 1, "limit": 50, "total": 2, "total_pages": 1}


def test_conversation_management(wired):
    created = service.create_conversation("u1", "Notes")
    assert created["title"] == "Notes"
    assert created["status"] == "active"

    listing = service.list_conversations("u1")
    assert listing["total"] == 1

    assert service.rename_conversation(created["id"], "u1", "Renamed") is True
    assert service.archive_conversation(created["id"], "u2") is False
    assert service.delete_conversation(created["id"], "u1") is True
    assert service.get_user_stats("u1") == {
        "total_conversations": 0,
        "active_conversations": 0,
        "total_messages": 0,
    }


def test_models_and_roles(wired):
    assert service.list_models()[0]["id"] == "m1"
    names = [r["name"] for r in service.list_roles()]
    assert "assistant" in names
    assert names == sorted(names)
