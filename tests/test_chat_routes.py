"""Direct chat endpoints and the live direct chat view."""
from __future__ import annotations

import pytest
from fastapi import WebSocketDisconnect


@pytest.fixture
def people(fake) -> dict[str, str]:
    return {name: fake.add_user(name) for name in ("alice", "bob", "mallory")}


def _start_chat(client, auth, user_id, other_id) -> str:
    response = client.post("/chats/direct", json={"user_id": other_id}, headers=auth(user_id))
    assert response.status_code == 200
    return response.json()["conversation_id"]


def test_requests_without_token_are_rejected(client):
    response = client.get("/chats")

    assert response.status_code in (401, 403)


def test_invalid_token_is_rejected(client):
    response = client.get("/chats", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid token"


def test_protected_route_echoes_user(client, auth, people):
    response = client.get("/protected", headers=auth(people["alice"]))

    assert response.status_code == 200
    assert people["alice"] in response.json()["message"]


def test_start_chat_is_reused_from_both_sides(client, auth, people, fake):
    first = _start_chat(client, auth, people["alice"], people["bob"])
    second = _start_chat(client, auth, people["bob"], people["alice"])

    assert first == second
    assert len(fake.rows("chat_participants")) == 2


def test_responses_carry_request_id(client, auth, people):
    generated = client.get("/chats", headers=auth(people["alice"]))
    forwarded = client.get("/chats", headers={**auth(people["alice"]), "X-Request-ID": "req-42"})

    assert generated.headers["X-Request-ID"]
    assert forwarded.headers["X-Request-ID"] == "req-42"


def test_start_chat_with_yourself(client, auth, people):
    response = client.post("/chats/direct", json={"user_id": people["alice"]}, headers=auth(people["alice"]))

    assert response.status_code == 400


def test_start_chat_backend_failure_shows_notice(client, auth, people, fake):
    fake.fail("insert", "chats")

    response = client.post("/chats/direct", json={"user_id": people["bob"]}, headers=auth(people["alice"]))

    assert response.status_code == 500
    assert response.json()["detail"] == "Error starting chat"


def test_send_and_read_messages(client, auth, people):
    chat_id = _start_chat(client, auth, people["alice"], people["bob"])

    sent = client.post(f"/chats/{chat_id}/messages", json={"content": " hi bob "}, headers=auth(people["alice"]))
    reply = client.post(f"/chats/{chat_id}/messages", json={"content": "hi alice"}, headers=auth(people["bob"]))
    history = client.get(f"/chats/{chat_id}/messages", headers=auth(people["bob"]))

    assert sent.status_code == 201
    assert sent.json()["message"]["content"] == "hi bob"
    assert reply.status_code == 201
    assert history.status_code == 200
    assert [(m["sender_name"], m["content"]) for m in history.json()["messages"]] == [
        ("alice", "hi bob"),
        ("bob", "hi alice"),
    ]


def test_inbox_and_partner(client, auth, people):
    chat_id = _start_chat(client, auth, people["alice"], people["bob"])
    client.post(f"/chats/{chat_id}/messages", json={"content": "ping"}, headers=auth(people["bob"]))

    inbox = client.get("/chats", headers=auth(people["alice"])).json()["chats"]
    partner = client.get(f"/chats/{chat_id}", headers=auth(people["alice"]))

    assert len(inbox) == 1
    assert inbox[0]["partner"]["username"] == "bob"
    assert inbox[0]["conversation"]["kind"] == "direct"
    assert inbox[0]["conversation"]["last_message_summary"]["text"] == "ping"
    assert partner.json()["partner"]["username"] == "bob"


def test_outsiders_cannot_read_or_write(client, auth, people):
    chat_id = _start_chat(client, auth, people["alice"], people["bob"])

    read = client.get(f"/chats/{chat_id}/messages", headers=auth(people["mallory"]))
    write = client.post(f"/chats/{chat_id}/messages", json={"content": "hey"}, headers=auth(people["mallory"]))
    partner = client.get(f"/chats/{chat_id}", headers=auth(people["mallory"]))

    assert read.status_code == 403
    assert write.status_code == 403
    assert partner.status_code == 404


def test_empty_message_is_rejected(client, auth, people):
    chat_id = _start_chat(client, auth, people["alice"], people["bob"])

    response = client.post(f"/chats/{chat_id}/messages", json={"content": "   "}, headers=auth(people["alice"]))

    assert response.status_code == 422


def test_send_failure_shows_notice(client, auth, people, fake):
    chat_id = _start_chat(client, auth, people["alice"], people["bob"])
    fake.fail("insert", "messages")

    response = client.post(f"/chats/{chat_id}/messages", json={"content": "hello"}, headers=auth(people["alice"]))

    assert response.status_code == 500
    assert response.json()["detail"] == "Error sending message"


def test_live_chat_merges_both_sides_without_duplicates(client, auth, token_for, people, fake):
    alice, bob = people["alice"], people["bob"]
    chat_id = _start_chat(client, auth, alice, bob)
    client.post(f"/chats/{chat_id}/messages", json={"content": "earlier"}, headers=auth(bob))

    with client.websocket_connect(f"/chats/{chat_id}?token={token_for(alice)}") as ws:
        history = ws.receive_json()
        assert history["type"] == "history"
        assert [m["content"] for m in history["messages"]] == ["earlier"]

        client.post(f"/chats/{chat_id}/messages", json={"content": "are you there?"}, headers=auth(bob))
        incoming = ws.receive_json()
        assert incoming["type"] == "message"
        assert incoming["message"]["content"] == "are you there?"
        assert incoming["message"]["sender_name"] == "bob"

        ws.send_json({"type": "send", "content": "yes!"})
        optimistic = ws.receive_json()
        confirmed = ws.receive_json()
        assert optimistic["type"] == "message"
        assert optimistic["message"]["pending"] is True
        assert confirmed["type"] == "confirmed"
        assert confirmed["provisional_id"] == optimistic["message"]["id"]
        assert confirmed["message"]["content"] == "yes!"

        # the realtime echo of "yes!" must not show up again
        client.post(f"/chats/{chat_id}/messages", json={"content": "great"}, headers=auth(bob))
        following = ws.receive_json()
        assert following["message"]["content"] == "great"

    assert fake.subscriptions == []


def test_live_chat_reports_bad_input_and_send_failures(client, auth, token_for, people, fake):
    alice, bob = people["alice"], people["bob"]
    chat_id = _start_chat(client, auth, alice, bob)

    with client.websocket_connect(f"/chats/{chat_id}?token={token_for(alice)}") as ws:
        ws.receive_json()

        ws.send_json({"type": "shout"})
        assert ws.receive_json()["message"] == "Unsupported frame"

        ws.send_json({"type": "send", "content": "  "})
        blank = ws.receive_json()
        assert blank["type"] == "error"

        fake.fail("insert", "messages")
        ws.send_json({"type": "send", "content": "draft text"})
        pending = ws.receive_json()
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["message"] == "Error sending message"
        assert error["draft"] == "draft text"
        assert error["provisional_id"] == pending["message"]["id"]


def test_live_chat_stays_usable_when_history_fails(client, auth, token_for, people, fake):
    alice, bob = people["alice"], people["bob"]
    chat_id = _start_chat(client, auth, alice, bob)
    fake.fail("query", "messages")

    with client.websocket_connect(f"/chats/{chat_id}?token={token_for(alice)}") as ws:
        assert ws.receive_json() == {"type": "history", "messages": []}
        assert ws.receive_json()["message"] == "Error loading messages"

        client.post(f"/chats/{chat_id}/messages", json={"content": "still here"}, headers=auth(bob))
        assert ws.receive_json()["message"]["content"] == "still here"

        ws.send_json({"type": "send", "content": "me too"})
        assert ws.receive_json()["message"]["pending"] is True
        assert ws.receive_json()["type"] == "confirmed"

    assert fake.subscriptions == []


def test_live_chat_answers_non_json_frames(client, auth, token_for, people):
    chat_id = _start_chat(client, auth, people["alice"], people["bob"])

    with client.websocket_connect(f"/chats/{chat_id}?token={token_for(people['alice'])}") as ws:
        ws.receive_json()

        ws.send_text("hello?")
        assert ws.receive_json()["message"] == "Unsupported frame"

        ws.send_json({"type": "send", "content": "hello"})
        assert ws.receive_json()["message"]["content"] == "hello"


def test_live_chat_requires_participant_and_token(client, auth, token_for, people):
    chat_id = _start_chat(client, auth, people["alice"], people["bob"])

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/chats/{chat_id}?token={token_for(people['mallory'])}"):
            pass

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/chats/{chat_id}"):
            pass
