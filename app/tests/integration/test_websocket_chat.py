"""
End-to-end tests for real-time direct messages over /ws.

The client is entered as a context manager so every socket in a test
shares one event loop, the way a single server process would.
"""
import pytest
from starlette.websockets import WebSocketDisconnect
from fastapi.testclient import TestClient
from db.models import User


class TestDirectMessaging:

    def test_hi_then_bye_after_recipient_disconnects(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        test_registry,
        test_store,
        token_for,
        wait_until
    ):
        user1, user2, _ = seed_test_users

        with test_client:
            with test_client.websocket_connect(f"/ws?token={token_for(user1)}") as ws1:
                assert wait_until(lambda: set(test_registry.snapshot()) == {user1.id})

                with test_client.websocket_connect(f"/ws?token={token_for(user2)}") as ws2:
                    assert wait_until(lambda: set(test_registry.snapshot()) == {user1.id, user2.id})

                    ws1.send_json({"token": token_for(user1), "to": user2.id, "text": "hi"})
                    delivered = ws2.receive_json()
                    assert (delivered["from"], delivered["text"]) == (user1.id, "hi")
                    assert wait_until(lambda: len(test_store.history(user1.id, user2.id)) == 1)

                assert wait_until(lambda: set(test_registry.snapshot()) == {user1.id})

                ws1.send_json({"token": token_for(user1), "to": user2.id, "text": "bye"})
                assert wait_until(lambda: len(test_store.history(user1.id, user2.id)) == 2)

        history = test_store.history(user1.id, user2.id)
        assert [(m.sender_id, m.receiver_id, m.text) for m in history] == [
            (user1.id, user2.id, "hi"),
            (user1.id, user2.id, "bye"),
        ]

    def test_message_reaches_online_recipient_and_history(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        test_registry,
        test_store,
        token_for,
        auth_headers,
        wait_until
    ):
        alice, bob, _ = seed_test_users

        with test_client:
            with test_client.websocket_connect(f"/ws?token={token_for(alice)}") as alice_ws, \
                    test_client.websocket_connect(f"/ws?token={token_for(bob)}") as bob_ws:
                assert wait_until(lambda: alice.id in test_registry and bob.id in test_registry)

                alice_ws.send_json({"token": token_for(alice), "to": bob.id, "text": "merhaba"})
                delivered = bob_ws.receive_json()

                assert delivered["from"] == alice.id
                assert delivered["text"] == "merhaba"
                assert delivered["created_at"]

                bob_ws.send_json({"token": token_for(bob), "to": alice.id, "text": "selam"})
                assert alice_ws.receive_json()["text"] == "selam"

                assert wait_until(lambda: len(test_store.history(alice.id, bob.id)) == 2)

            assert wait_until(lambda: len(test_registry) == 0)

        response = test_client.get(f"/api/messages/{bob.id}", headers=auth_headers(alice))
        assert response.status_code == 200
        assert [(m["from"], m["text"]) for m in response.json()] == [
            (alice.id, "merhaba"),
            (bob.id, "selam"),
        ]

    def test_message_to_offline_user_is_stored(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        test_store,
        token_for,
        auth_headers,
        wait_until
    ):
        alice, bob, _ = seed_test_users

        with test_client:
            with test_client.websocket_connect(f"/ws?token={token_for(alice)}") as alice_ws:
                alice_ws.send_json({"token": token_for(alice), "to": bob.id, "text": "see you later"})
                assert wait_until(lambda: len(test_store.history(alice.id, bob.id)) == 1)

        history = test_client.get(f"/api/messages/{alice.id}", headers=auth_headers(bob)).json()
        assert [m["text"] for m in history] == ["see you later"]

    def test_bad_frames_do_not_close_the_connection(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        test_registry,
        test_store,
        token_for,
        wait_until
    ):
        alice, bob, _ = seed_test_users

        with test_client:
            with test_client.websocket_connect(f"/ws?token={token_for(alice)}") as alice_ws, \
                    test_client.websocket_connect(f"/ws?token={token_for(bob)}") as bob_ws:
                assert wait_until(lambda: bob.id in test_registry)

                alice_ws.send_text("this is not json")
                alice_ws.send_json({"to": bob.id, "text": "no token"})
                alice_ws.send_json({"token": "forged", "to": bob.id, "text": "bad token"})
                alice_ws.send_json({"token": token_for(alice), "to": bob.id, "text": "valid"})

                # Only the valid frame is delivered, and it arrives first
                assert bob_ws.receive_json()["text"] == "valid"

        assert [m.text for m in test_store.history(alice.id, bob.id)] == ["valid"]

    def test_out_of_range_recipient_keeps_sender_connected(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        test_registry,
        test_store,
        token_for,
        wait_until
    ):
        alice, bob, _ = seed_test_users

        with test_client:
            with test_client.websocket_connect(f"/ws?token={token_for(alice)}") as alice_ws, \
                    test_client.websocket_connect(f"/ws?token={token_for(bob)}") as bob_ws:
                assert wait_until(lambda: alice.id in test_registry and bob.id in test_registry)

                alice_ws.send_json({"token": token_for(alice), "to": 10 ** 30, "text": "x"})
                alice_ws.send_json({"token": token_for(alice), "to": bob.id, "text": "still here"})

                assert bob_ws.receive_json()["text"] == "still here"
                assert wait_until(lambda: len(test_store.history(alice.id, bob.id)) == 1)
                assert alice.id in test_registry

        assert [m.text for m in test_store.history(alice.id, bob.id)] == ["still here"]

    def test_reconnect_routes_to_newest_connection(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        test_registry,
        token_for,
        wait_until
    ):
        alice, bob, _ = seed_test_users

        with test_client:
            with test_client.websocket_connect(f"/ws?token={token_for(bob)}") as bob_ws:
                with test_client.websocket_connect(f"/ws?token={token_for(alice)}"):
                    assert wait_until(lambda: alice.id in test_registry)
                    first = test_registry.get(alice.id)

                    with test_client.websocket_connect(f"/ws?token={token_for(alice)}") as newest:
                        assert wait_until(lambda: test_registry.get(alice.id) is not first)

                        bob_ws.send_json({"token": token_for(bob), "to": alice.id, "text": "which one?"})
                        assert newest.receive_json()["text"] == "which one?"

                    assert wait_until(lambda: alice.id not in test_registry)

            assert wait_until(lambda: len(test_registry) == 0)

    def test_anonymous_connection_is_not_registered(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        test_registry,
        test_store,
        token_for,
        wait_until
    ):
        alice, bob, _ = seed_test_users

        with test_client:
            with test_client.websocket_connect("/ws?token=garbage") as anonymous_ws:
                anonymous_ws.send_json({"token": token_for(alice), "to": bob.id, "text": "sent anyway"})
                assert wait_until(lambda: len(test_store.history(alice.id, bob.id)) == 1)
                assert len(test_registry) == 0


class TestConnectionPolicies:

    def test_required_auth_rejects_with_4001(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        make_gateway,
        use_gateway
    ):
        use_gateway(make_gateway(ws_require_auth=True))

        with test_client:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with test_client.websocket_connect("/ws?token=garbage"):
                    pass

        assert exc_info.value.code == 4001

    def test_feedback_mode_reports_errors(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        token_for,
        make_gateway,
        use_gateway
    ):
        use_gateway(make_gateway(ws_frame_feedback=True))
        alice = seed_test_users[0]

        with test_client:
            with test_client.websocket_connect(f"/ws?token={token_for(alice)}") as ws:
                ws.send_text("{")
                error = ws.receive_json()

        assert error == {"type": "error", "code": "MALFORMED_FRAME", "error": "invalid_json"}

    def test_idle_connection_is_closed(
        self,
        test_client: TestClient,
        seed_test_users: list[User],
        token_for,
        make_gateway,
        use_gateway
    ):
        use_gateway(make_gateway(ws_idle_timeout_seconds=0.1))

        with test_client:
            with test_client.websocket_connect(f"/ws?token={token_for(seed_test_users[0])}") as ws:
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    ws.receive_json()

        assert exc_info.value.code == 1001
