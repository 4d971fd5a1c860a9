import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import FakeTransport, StubRecorder
from salesbot.config import settings
from salesbot.main import create_app
from salesbot.script_store import ScriptStore
from salesbot.services import build_services
from salesbot.webhook import SECRET_HEADER, UpdateDedupe, extract_message, process_update

SCRIPT = {"steps": [{"id": "S1", "on": "start", "messages": ["Привет"]}]}


def _update(update_id, text="/start", chat_id=555):
    return {"update_id": update_id, "message": {"message_id": 1, "chat": {"id": chat_id}, "text": text}}


@pytest.fixture
def client_and_transport(monkeypatch):
    monkeypatch.setenv("WEBHOOK_SECRET", "s3cret")
    settings.cache_clear()
    store = ScriptStore()
    store.load_data(SCRIPT, source="test.json")
    transport = FakeTransport()
    services = build_services(settings(), store=store, transport=transport, recorder=StubRecorder())
    app = create_app(services, dedupe=UpdateDedupe(), register_webhook=False)
    with TestClient(app) as client:
        yield client, transport


def test_rejects_wrong_secret(client_and_transport):
    client, transport = client_and_transport
    r = client.post("/telegram/webhook", json=_update(1), headers={SECRET_HEADER: "nope"})
    assert r.status_code == 401
    assert transport.sent == []


def test_rejects_non_object_body(client_and_transport):
    client, _ = client_and_transport
    r = client.post("/telegram/webhook", json=[1, 2], headers={SECRET_HEADER: "s3cret"})
    assert r.status_code == 400


def test_command_is_dispatched_once(client_and_transport):
    client, transport = client_and_transport
    headers = {SECRET_HEADER: "s3cret"}

    first = client.post("/telegram/webhook", json=_update(10, "/status"), headers=headers)
    again = client.post("/telegram/webhook", json=_update(10, "/status"), headers=headers)

    assert first.status_code == 200
    assert first.json() == {"ok": True, "handled": True, "kind": "command", "command": "status"}
    assert again.json() == {"ok": True, "duplicate": True}
    assert transport.texts(555) == ["Ничего не запущено."]


def test_non_text_updates_are_ignored(client_and_transport):
    client, transport = client_and_transport
    sticker = {"update_id": 11, "message": {"chat": {"id": 555}, "sticker": {"file_id": "x"}}}
    r = client.post("/telegram/webhook", json=sticker, headers={SECRET_HEADER: "s3cret"})
    assert r.json() == {"ok": True, "ignored": True}
    assert transport.sent == []


def test_reply_failure_is_reported_not_raised(client_and_transport):
    client, transport = client_and_transport
    transport.fail_for.add(555)
    r = client.post("/telegram/webhook", json=_update(12, "/start"), headers={SECRET_HEADER: "s3cret"})
    assert r.status_code == 200
    assert r.json() == {"ok": False, "error": "reply_failed"}


def test_extract_message_accepts_edited_messages():
    update = {"edited_message": {"chat": {"id": 9}, "text": "да"}}
    assert extract_message(update) == (9, "да")
    assert extract_message({"callback_query": {}}) is None


def test_memory_dedupe_is_bounded():
    dedupe = UpdateDedupe(max_mem_size=2)
    assert dedupe.seen(1) is False
    assert dedupe.seen(1) is True
    dedupe.seen(2)
    dedupe.seen(3)
    # oldest id fell out of the window
    assert dedupe.seen(1) is False
    assert dedupe.seen(None) is False


def test_process_update_without_http():
    class State:
        pass

    class Dispatcher:
        def __init__(self):
            self.calls = []

        async def dispatch(self, chat_id, text):
            self.calls.append((chat_id, text))
            return {"handled": True, "kind": "reply"}

    state = State()
    state.dedupe = UpdateDedupe()
    state.dispatcher = Dispatcher()

    result = asyncio.run(process_update(state, _update(20, "нет", chat_id=3)))
    assert result == {"ok": True, "handled": True, "kind": "reply"}
    assert state.dispatcher.calls == [(3, "нет")]


def test_redis_dedupe_uses_bounded_socket_timeout(monkeypatch):
    calls = []

    class StalledRedis:
        def set(self, *args, **kwargs):
            raise TimeoutError("redis stalled")

    def fake_from_url(url, **kwargs):
        calls.append((url, kwargs))
        return StalledRedis()

    monkeypatch.setattr("salesbot.webhook.redis.from_url", fake_from_url)
    dedupe = UpdateDedupe("rediss://cache.example:6380", tls=True)

    url, kwargs = calls[0]
    assert url == "rediss://cache.example:6380"
    assert kwargs["socket_timeout"] == 3
    assert kwargs["ssl"] is True
    # a stalled redis falls back to the in-memory window
    assert dedupe.seen(7) is False
    assert dedupe.seen(7) is True
