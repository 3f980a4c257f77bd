import pytest

from conftest import create_ad, register


def send(client, headers, receiver_id, content, ad_id=None):
    body = {"content": content, "receiverId": receiver_id}
    if ad_id is not None:
        body["adId"] = ad_id
    response = client.post("/api/messages", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]["message"]


def unread(client, headers):
    return client.get("/api/messages/unread-count", headers=headers).json()["data"]["unreadCount"]


@pytest.fixture
def pair(alice, bob):
    return alice, bob


def test_send_message_with_ad(client, pair, category):
    (alice_user, alice_headers), (bob_user, bob_headers) = pair
    ad = create_ad(client, bob_headers, category["id"])

    message = send(client, alice_headers, bob_user["id"], "Is it still available?", ad["id"])
    assert message["sender"] == {"id": alice_user["id"], "name": "Alice"}
    assert message["receiver"]["id"] == bob_user["id"]
    assert message["ad"]["id"] == ad["id"]
    assert message["ad"]["mainImage"] == "https://img.example.com/1.jpg"
    assert message["isRead"] is False


def test_send_message_rejections(client, pair, query):
    (alice_user, alice_headers), (bob_user, _) = pair

    response = client.post(
        "/api/messages", json={"content": "hi", "receiverId": alice_user["id"]}, headers=alice_headers
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot send message to yourself"

    response = client.post(
        "/api/messages", json={"content": "hi", "receiverId": 999}, headers=alice_headers
    )
    assert response.status_code == 404

    response = client.post(
        "/api/messages",
        json={"content": "hi", "receiverId": bob_user["id"], "adId": 999},
        headers=alice_headers,
    )
    assert response.status_code == 404

    query("UPDATE users SET is_active = 0 WHERE id = ?", bob_user["id"])
    response = client.post(
        "/api/messages", json={"content": "hi", "receiverId": bob_user["id"]}, headers=alice_headers
    )
    assert response.status_code == 404
    assert query("SELECT COUNT(*) FROM messages") == [(0,)]


def test_conversations_group_by_counterpart(client, pair):
    (alice_user, alice_headers), (bob_user, bob_headers) = pair
    carol_user, carol_headers = register(client, "Carol", "carol@example.com")

    send(client, alice_headers, bob_user["id"], "t1")
    send(client, bob_headers, alice_user["id"], "t2")
    send(client, carol_headers, alice_user["id"], "from carol")
    last = send(client, alice_headers, bob_user["id"], "t3")

    response = client.get("/api/messages/conversations", headers=alice_headers)
    conversations = response.json()["data"]["conversations"]

    low, high = sorted((alice_user["id"], bob_user["id"]))
    assert len(conversations) == 2
    with_bob, with_carol = conversations
    assert with_bob["id"] == f"{low}-{high}"
    assert with_bob["lastMessage"]["id"] == last["id"]
    assert with_bob["otherUser"] == {"id": bob_user["id"], "name": "Bob"}
    assert with_bob["unreadCount"] == 1
    assert with_carol["otherUser"]["id"] == carol_user["id"]
    assert with_carol["unreadCount"] == 1


def test_no_messages_means_no_conversations(client, alice):
    _, headers = alice
    response = client.get("/api/messages/conversations", headers=headers)
    assert response.json()["data"]["conversations"] == []


def test_viewing_thread_marks_it_read_and_returns_oldest_first(client, pair):
    (alice_user, alice_headers), (bob_user, bob_headers) = pair
    carol_user, carol_headers = register(client, "Carol", "carol@example.com")

    for text in ("one", "two", "three"):
        send(client, bob_headers, alice_user["id"], text)
    send(client, alice_headers, bob_user["id"], "four")
    send(client, carol_headers, alice_user["id"], "other thread")

    assert unread(client, alice_headers) == 4

    response = client.get(f"/api/messages/{bob_user['id']}", headers=alice_headers)
    data = response.json()["data"]
    assert [m["content"] for m in data["messages"]] == ["one", "two", "three", "four"]
    assert data["pagination"]["totalItems"] == 4
    assert data["pagination"]["itemsPerPage"] == 50

    assert unread(client, alice_headers) == 1
    # The other side's unread state is untouched.
    assert unread(client, bob_headers) == 1


def test_thread_pagination_takes_newest_page(client, pair):
    (alice_user, alice_headers), (bob_user, bob_headers) = pair
    for text in ("a", "b", "c"):
        send(client, bob_headers, alice_user["id"], text)

    response = client.get(
        f"/api/messages/{bob_user['id']}", params={"limit": 2}, headers=alice_headers
    )
    data = response.json()["data"]
    assert [m["content"] for m in data["messages"]] == ["b", "c"]
    assert data["pagination"]["totalPages"] == 2


def test_mark_as_read_endpoint(client, pair):
    (alice_user, alice_headers), (bob_user, bob_headers) = pair
    send(client, bob_headers, alice_user["id"], "ping")
    send(client, bob_headers, alice_user["id"], "ping again")

    response = client.put(f"/api/messages/{bob_user['id']}/read", headers=alice_headers)
    assert response.json()["data"] == {"updatedCount": 2}
    assert unread(client, alice_headers) == 0


def test_only_sender_may_delete(client, pair, query):
    (alice_user, alice_headers), (bob_user, bob_headers) = pair
    message = send(client, alice_headers, bob_user["id"], "oops")

    response = client.delete(f"/api/messages/{message['id']}", headers=bob_headers)
    assert response.status_code == 403

    response = client.delete(f"/api/messages/{message['id']}", headers=alice_headers)
    assert response.status_code == 200
    assert query("SELECT COUNT(*) FROM messages") == [(0,)]

    assert client.delete(f"/api/messages/{message['id']}", headers=alice_headers).status_code == 404


def test_search_messages(client, pair):
    (alice_user, alice_headers), (bob_user, bob_headers) = pair
    carol_user, carol_headers = register(client, "Carol", "carol@example.com")
    send(client, bob_headers, alice_user["id"], "Price is NEGOTIABLE")
    send(client, carol_headers, alice_user["id"], "is the price negotiable?")
    send(client, bob_headers, alice_user["id"], "See you tomorrow")

    response = client.get("/api/messages/search", params={"query": "negotiable"}, headers=alice_headers)
    assert len(response.json()["data"]["messages"]) == 2

    response = client.get(
        "/api/messages/search",
        params={"query": "negotiable", "userId": bob_user["id"]},
        headers=alice_headers,
    )
    assert [m["sender"]["id"] for m in response.json()["data"]["messages"]] == [bob_user["id"]]

    response = client.get("/api/messages/search", params={"query": "n"}, headers=alice_headers)
    assert response.status_code == 400


def test_deleting_ad_keeps_message_history(client, pair, category, query):
    (alice_user, alice_headers), (bob_user, bob_headers) = pair
    ad = create_ad(client, bob_headers, category["id"])
    send(client, alice_headers, bob_user["id"], "Still for sale?", ad["id"])

    assert client.delete(f"/api/ads/{ad['id']}", headers=bob_headers).status_code == 200

    assert query("SELECT ad_id FROM messages") == [(None,)]
    response = client.get(f"/api/messages/{alice_user['id']}", headers=bob_headers)
    assert response.json()["data"]["messages"][0]["ad"] is None
