"""API tests through FastAPI's TestClient, wired to the echo provider."""

import pytest
from fastapi.testclient import TestClient

from persona_chat.app import create_app
from persona_chat.llm import QUOTA_MESSAGE, GenerationFailure, QuotaExceeded


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c


def _character(client, name="Alice", **fields) -> dict:
    body = {"name": name, "description": f"{name} is kind", **fields}
    resp = client.post("/api/characters", json=body)
    assert resp.status_code == 201
    return resp.json()


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok", "loaded": True}


def test_settings_hide_api_key(settings):
    keyed = settings.model_copy(update={"api_key": "sk-secret"})
    with TestClient(create_app(keyed)) as c:
        data = c.get("/api/settings").json()
    assert "api_key" not in data
    assert data["has_api_key"] is True
    assert data["provider_url"] == "echo"
    assert data["video_poll_interval"] == 0


# ── Characters ───────────────────────────────────────────


def test_character_crud(client):
    alice = _character(client, height=1650)
    assert alice["height"] == 1650

    assert client.get(f"/api/characters/{alice['id']}").json()["name"] == "Alice"
    resp = client.put(
        f"/api/characters/{alice['id']}",
        json={"name": "Alicia", "description": "Now braver"},
    )
    assert resp.status_code == 200
    assert resp.json()["created_at"] == alice["created_at"]
    assert [c["name"] for c in client.get("/api/characters").json()] == ["Alicia"]

    assert client.delete(f"/api/characters/{alice['id']}").json() == {"ok": True}
    assert client.get(f"/api/characters/{alice['id']}").status_code == 404
    assert client.delete(f"/api/characters/{alice['id']}").status_code == 404


def test_unknown_character(client):
    assert client.put("/api/characters/nope", json={"name": "x", "description": "y"}).status_code == 404


def test_avatar(client):
    resp = client.post("/api/characters/avatar", json={"description": "a tall elf"})
    assert resp.status_code == 200
    assert resp.json()["avatar"].startswith("echo://image/")


# ── Chats and turns ──────────────────────────────────────


def test_direct_chat_turn(client):
    alice = _character(client)
    chat = client.post(f"/api/chats/direct/{alice['id']}").json()
    assert client.post(f"/api/chats/direct/{alice['id']}").json()["id"] == chat["id"]

    resp = client.post(f"/api/chats/{chat['id']}/messages", json={"text": "hello there friend"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["banner"] is None
    assert [m["content"] for m in data["replies"]] == ["hello there friend"]
    messages = data["chat"]["messages"]
    assert [(m["sender_label"], m["content"]) for m in messages] == [
        ("You", "hello there friend"),
        ("Alice", "hello there friend"),
    ]
    assert not any(m["is_loading"] for m in messages)


def test_group_chat_and_listing(client):
    alice = _character(client, "Alice")
    bob = _character(client, "Bob")
    resp = client.post("/api/chats", json={"character_ids": [alice["id"], bob["id"]]})
    assert resp.status_code == 201
    chat = resp.json()
    assert chat["name"] == "Alice, Bob"

    listing = client.get("/api/chats").json()
    assert [c["id"] for c in listing] == [chat["id"]]
    assert "messages" not in listing[0]

    turn = client.post(f"/api/chats/{chat['id']}/messages", json={"text": "hi"}).json()
    assert [m["sender_id"] for m in turn["replies"]] == [alice["id"], bob["id"]]


def test_create_chat_with_unknown_character(client):
    assert client.post("/api/chats", json={"character_ids": ["ghost"]}).status_code == 404
    assert client.post("/api/chats", json={"character_ids": []}).status_code == 400


def test_patch_and_delete_chat(client):
    alice = _character(client)
    chat = client.post(f"/api/chats/direct/{alice['id']}").json()

    patched = client.patch(f"/api/chats/{chat['id']}", json={"is_nsfw": True, "name": "Late night"}).json()
    assert patched["is_nsfw"] is True
    assert patched["name"] == "Late night"

    assert client.delete(f"/api/chats/{chat['id']}").json() == {"ok": True}
    assert client.get(f"/api/chats/{chat['id']}").status_code == 404
    assert client.post(f"/api/chats/{chat['id']}/messages", json={"text": "x"}).status_code == 404


def test_removed_participant_label(client):
    alice = _character(client)
    chat = client.post(f"/api/chats/direct/{alice['id']}").json()
    client.post(f"/api/chats/{chat['id']}/messages", json={"text": "bye now"})
    client.delete(f"/api/characters/{alice['id']}")

    messages = client.get(f"/api/chats/{chat['id']}").json()["messages"]
    assert [m["sender_label"] for m in messages] == ["You", "(removed participant)"]


# ── Media, backgrounds, speech ───────────────────────────


def test_photo_and_video(client):
    alice = _character(client)
    chat = client.post(f"/api/chats/direct/{alice['id']}").json()

    photo = client.post(f"/api/chats/{chat['id']}/media", json={"kind": "photo"}).json()
    assert photo["content"] == "Photo from the scene:"
    assert photo["image_url"].startswith("echo://image/")

    video = client.post(f"/api/chats/{chat['id']}/media", json={"kind": "video"}).json()
    assert video["content"] == "Video clip:"
    assert video["video_url"] == "echo://video/echo-job"

    assert len(client.get(f"/api/chats/{chat['id']}").json()["messages"]) == 2


def test_media_validation(client):
    assert client.post("/api/chats/nope/media", json={"kind": "photo"}).status_code == 404
    alice = _character(client)
    chat = client.post(f"/api/chats/direct/{alice['id']}").json()
    assert client.post(f"/api/chats/{chat['id']}/media", json={"kind": "gif"}).status_code == 422


def test_background(client):
    alice = _character(client)
    chat = client.post(f"/api/chats/direct/{alice['id']}").json()

    resp = client.post(f"/api/chats/{chat['id']}/background")
    assert resp.status_code == 200
    url = resp.json()["background_url"]
    assert client.get(f"/api/chats/{chat['id']}").json()["background_url"] == url


def test_speech(client):
    alice = _character(client)
    chat = client.post(f"/api/chats/direct/{alice['id']}").json()
    reply = client.post(f"/api/chats/{chat['id']}/messages", json={"text": "*waves* hi"}).json()["replies"][0]

    resp = client.get(f"/api/chats/{chat['id']}/messages/{reply['id']}/speech")
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "audio/mpeg"
    assert resp.content == b"hi"

    assert client.get(f"/api/chats/{chat['id']}/messages/nope/speech").status_code == 404


# ── Gallery ──────────────────────────────────────────────


def test_gallery(client):
    resp = client.post("/api/gallery", json={"url": "https://img.example/1.png", "type": "image", "caption": "one"})
    assert resp.status_code == 201
    item = resp.json()
    assert client.get("/api/gallery").json() == [item]
    assert client.delete(f"/api/gallery/{item['id']}").json() == {"ok": True}
    assert client.delete(f"/api/gallery/{item['id']}").status_code == 404


# ── Errors and persistence ───────────────────────────────


def test_quota_is_reported(settings, provider):
    provider.image = QuotaExceeded()
    with TestClient(create_app(settings, provider=provider)) as client:
        alice = _character(client)
        chat = client.post(f"/api/chats/direct/{alice['id']}").json()
        resp = client.post(f"/api/chats/{chat['id']}/media", json={"kind": "photo"})
        assert resp.status_code == 429
        assert resp.json()["detail"] == QUOTA_MESSAGE

        provider.turns = {"Alice": QuotaExceeded()}
        turn = client.post(f"/api/chats/{chat['id']}/messages", json={"text": "hi"}).json()
        assert turn["banner"] == QUOTA_MESSAGE
        assert turn["replies"] == []


def test_media_failure_is_502(settings, provider):
    provider.image = GenerationFailure("renderer down")
    with TestClient(create_app(settings, provider=provider)) as client:
        alice = _character(client)
        chat = client.post(f"/api/chats/direct/{alice['id']}").json()
        resp = client.post(f"/api/chats/{chat['id']}/media", json={"kind": "photo"})
        assert resp.status_code == 502
        assert len(client.get(f"/api/chats/{chat['id']}").json()["messages"]) == 0


def test_state_survives_restart(settings):
    with TestClient(create_app(settings)) as client:
        alice = _character(client)
        chat = client.post(f"/api/chats/direct/{alice['id']}").json()
        client.post(f"/api/chats/{chat['id']}/messages", json={"text": "remember me"})

    with TestClient(create_app(settings)) as client:
        messages = client.get(f"/api/chats/{chat['id']}").json()["messages"]
        assert [m["content"] for m in messages] == ["remember me", "remember me"]
