import pytest

from messenger.domain.chat.models import UserProfile
from messenger.infra.jwt import encode_access


def _as(user_id: str) -> dict[str, str]:
	return {"X-User-Id": user_id}


@pytest.mark.asyncio
async def test_requests_without_identity_are_rejected(api_client):
	resp = await api_client.get("/conversations")

	assert resp.status_code == 401
	body = resp.json()
	assert body["detail"] == "invalid_token"
	assert body["request_id"]


@pytest.mark.asyncio
async def test_bearer_token_is_accepted(api_client):
	token = encode_access({"sub": "alice"})

	resp = await api_client.get("/contacts", headers={"Authorization": f"Bearer {token}"})

	assert resp.status_code == 200
	assert resp.json()["items"] == []


@pytest.mark.asyncio
async def test_send_requires_contact_link(api_client):
	resp = await api_client.post("/messages", json={"receiverId": "carol", "text": "hi"}, headers=_as("alice"))

	assert resp.status_code == 403
	assert resp.json()["detail"] == "Users are not contacts"
	assert "request_id" in resp.json()


@pytest.mark.asyncio
async def test_send_validates_body(api_client, friends):
	resp = await api_client.post("/messages", json={"receiverId": "bob", "text": "   "}, headers=_as("alice"))

	assert resp.status_code == 422
	assert resp.json()["detail"] == "validation_error"


@pytest.mark.asyncio
async def test_http_send_then_read_flow(api_client, chat_context, sink, friends):
	await chat_context.presence.register("alice", "sid-a")

	sent = await api_client.post("/messages", json={"receiverId": "bob", "text": "hello"}, headers=_as("alice"))
	assert sent.status_code == 201
	payload = sent.json()
	assert payload["delivered_live"] is False
	message_id = payload["message"]["message_id"]
	assert payload["message"]["status"] == "sent"

	unread = await api_client.get("/messages/unread", headers=_as("bob"))
	assert unread.json()["count"] == 1
	assert unread.json()["by_sender"][0]["sender_id"] == "alice"

	history = await api_client.get("/conversations/alice/messages", headers=_as("bob"))
	assert history.status_code == 200
	assert [item["message_id"] for item in history.json()["items"]] == [message_id]
	assert history.json()["marked_read"] == 1
	[receipt] = sink.received("sid-a", "messages_read")
	assert receipt["count"] == 1

	status = await api_client.get(f"/messages/{message_id}/status", headers=_as("alice"))
	assert status.json()["status"] == "read"
	assert status.json()["read_at"] is not None

	again = await api_client.get("/conversations/alice/messages", headers=_as("bob"))
	assert again.json()["marked_read"] == 0


@pytest.mark.asyncio
async def test_send_with_client_message_id_is_idempotent(api_client, chat_context, friends):
	body = {"receiverId": "bob", "text": "once", "messageId": "01HZX3R8Q6V5N4M3K2J1H0G9F8"}

	first = await api_client.post("/messages", json=body, headers=_as("alice"))
	second = await api_client.post("/messages", json=body, headers=_as("alice"))

	assert first.json()["message"]["message_id"] == second.json()["message"]["message_id"]
	assert await chat_context.store.count_all("alice", "bob") == 1


@pytest.mark.asyncio
async def test_conversation_list_and_summary(api_client, friends):
	await api_client.post("/messages", json={"receiverId": "alice", "text": "ping"}, headers=_as("bob"))

	listing = await api_client.get("/conversations", headers=_as("alice"))
	[row] = listing.json()["items"]
	assert row["counterparty_id"] == "bob"
	assert row["unread_count"] == 1
	assert row["is_online"] is False

	summary = await api_client.get("/conversations/bob/summary", headers=_as("alice"))
	assert summary.json()["total"] == 1
	assert summary.json()["counts"]["sent"] == 1


@pytest.mark.asyncio
async def test_open_conversation(api_client, friends):
	ok = await api_client.post("/conversations/alice", headers=_as("bob"))
	assert ok.status_code == 200
	assert ok.json()["participants"] == ["alice", "bob"]

	denied = await api_client.post("/conversations/carol", headers=_as("bob"))
	assert denied.status_code == 403


@pytest.mark.asyncio
async def test_delete_message_over_http(api_client, friends):
	sent = await api_client.post("/messages", json={"receiverId": "bob", "text": "oops"}, headers=_as("alice"))
	message_id = sent.json()["message"]["message_id"]

	forbidden = await api_client.delete(f"/messages/{message_id}", headers=_as("bob"))
	assert forbidden.status_code == 403
	assert forbidden.json()["detail"] == "Only the sender can delete a message"

	deleted = await api_client.delete(f"/messages/{message_id}", headers=_as("alice"))
	assert deleted.status_code == 204

	status = await api_client.get(f"/messages/{message_id}/status", headers=_as("alice"))
	assert status.json()["status"] == "deleted"
	history = await api_client.get("/conversations/bob/messages", headers=_as("alice"))
	assert history.json()["items"] == []

	outsider = await api_client.get(f"/messages/{message_id}/status", headers=_as("carol"))
	assert outsider.status_code == 404


@pytest.mark.asyncio
async def test_contact_management(api_client):
	created = await api_client.post("/contacts", json={"contactUserId": "bob"}, headers=_as("alice"))
	assert created.status_code == 201
	assert created.json() == {"contact_user_id": "bob", "created": True}

	duplicate = await api_client.post("/contacts", json={"contactUserId": "alice"}, headers=_as("bob"))
	assert duplicate.status_code == 200
	assert duplicate.json()["created"] is False

	self_link = await api_client.post("/contacts", json={"contactUserId": "alice"}, headers=_as("alice"))
	assert self_link.status_code == 422

	unknown = await api_client.post("/contacts", json={"contactUserId": "nobody"}, headers=_as("alice"))
	assert unknown.status_code == 404

	listing = await api_client.get("/contacts", headers=_as("bob"))
	assert [item["user_id"] for item in listing.json()["items"]] == ["alice"]

	removed = await api_client.delete("/contacts/alice", headers=_as("bob"))
	assert removed.status_code == 204
	missing = await api_client.delete("/contacts/alice", headers=_as("bob"))
	assert missing.status_code == 404


@pytest.mark.asyncio
async def test_contact_search_and_import(api_client):
	imported = await api_client.post(
		"/contacts/import",
		json={"phoneNumbers": ["+1 555 000 0002", "+1 555 000 0003", "12345"]},
		headers=_as("alice"),
	)
	assert imported.status_code == 200
	assert imported.json()["added"] == 2
	assert imported.json()["not_found"] == 1

	found = await api_client.get("/contacts", params={"search": "white"}, headers=_as("alice"))
	assert [item["user_id"] for item in found.json()["items"]] == ["carol"]


@pytest.mark.asyncio
async def test_history_limit_is_bounded(api_client, friends):
	resp = await api_client.get("/conversations/bob/messages", params={"limit": 1000}, headers=_as("alice"))

	assert resp.status_code == 422


@pytest.mark.asyncio
async def test_uuid_identities_are_case_insensitive(api_client, chat_context, directory, sink):
	dana, evan = "5a0f3c1e-2b4d-4e6f-8a9b-0c1d2e3f4a5b", "6b1e4d2f-3c5e-4f70-9bac-1d2e3f4a5b6c"
	directory.add_profile(UserProfile(user_id=dana, name="Dana"))
	directory.add_profile(UserProfile(user_id=evan, name="Evan"))
	await chat_context.presence.register(evan, "sid-e")

	added = await api_client.post("/contacts", json={"contactUserId": evan.upper()}, headers=_as(dana.upper()))
	assert added.status_code == 201
	assert added.json()["contact_user_id"] == evan

	resp = await api_client.post("/messages", json={"receiverId": evan.upper(), "text": "hi"}, headers=_as(dana.upper()))

	assert resp.status_code == 201
	assert resp.json()["message"]["sender_id"] == dana
	assert resp.json()["delivered_live"] is True
	assert len(sink.received("sid-e", "new_message")) == 1

	history = await api_client.get(f"/conversations/{dana.upper()}/messages", headers=_as(evan))
	assert [item["body"] for item in history.json()["items"]] == ["hi"]
