"""
Pulse Backend — WebSocket Endpoint Tests
=========================================

What:  /ws/chat end to end through Starlette's TestClient (lifespan included).

What we test:
    ✅ handshake with token / dev userId / `token` cookie / nothing
    ✅ connection log lines carry the connection id as request id
    ✅ sendMessage reaches sender and receiver sockets
    ✅ malformed frames get an error, the socket stays usable
    ✅ closing the socket deregisters it
"""

import logging

from fastapi.testclient import TestClient

from app.core.request_id import get_request_id
from tests.conftest import make_token


def test_chat_roundtrip(app, store):
    with TestClient(app) as client:
        with client.websocket_connect(f"/ws/chat?token={make_token(1)}") as alice, \
             client.websocket_connect("/ws/chat?userId=2") as bob:

            hello_alice = alice.receive_json()
            hello_bob = bob.receive_json()
            assert hello_alice["event"] == "connected"
            assert hello_alice["data"]["userId"] == 1
            assert hello_bob["data"]["authenticated"] is True

            alice.send_json({"event": "sendMessage", "data": {"receiverId": 2, "content": "hi"}})

            for ws in (alice, bob):
                frame = ws.receive_json()
                assert frame["event"] == "receiveMessage"
                assert frame["data"]["id"] == 501
                assert frame["data"]["senderId"] == 1
                assert frame["data"]["content"] == "hi"

        assert len(app.state.realtime.registry) == 0


def test_anonymous_socket(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws/chat") as ws:
            assert ws.receive_json()["data"]["authenticated"] is False
            assert len(app.state.realtime.registry) == 0

            ws.send_json({"event": "sendMessage", "data": {"receiverId": 2, "content": "hi"}})
            frame = ws.receive_json()
            assert frame["event"] == "error"
            assert frame["data"]["error"]["code"] == "UNAUTHENTICATED"


def test_bad_frames_keep_socket_open(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws/chat?userId=1") as ws:
            ws.receive_json()

            ws.send_text("{not json")
            assert ws.receive_json()["data"]["error"]["code"] == "INVALID_PAYLOAD"

            ws.send_text("PING")
            assert ws.receive_json()["event"] == "pong"

            ws.send_json({"event": "ping"})
            assert ws.receive_json()["event"] == "pong"


def test_token_cookie_handshake(app):
    with TestClient(app) as client:
        with client.websocket_connect("/ws/chat", headers={"cookie": f"token={make_token(4)}"}) as ws:
            hello = ws.receive_json()

            assert hello["data"]["authenticated"] is True
            assert hello["data"]["userId"] == 4


class _ConnectLogCapture(logging.Filter):
    """Records (connection_id, request_id in context) for each ws_connected log line."""

    def __init__(self):
        super().__init__()
        self.seen = []

    def filter(self, record):
        if record.getMessage() == "ws_connected":
            self.seen.append((record.connection_id, get_request_id()))
        return True


def test_connect_logs_carry_connection_id(app, caplog):
    caplog.set_level(logging.INFO, logger="realtime.gateway")
    capture = _ConnectLogCapture()
    gateway_log = logging.getLogger("realtime.gateway")
    gateway_log.addFilter(capture)
    try:
        with TestClient(app) as client:
            with client.websocket_connect("/ws/chat?userId=1") as ws:
                connection_id = ws.receive_json()["data"]["connectionId"]
    finally:
        gateway_log.removeFilter(capture)

    assert capture.seen == [(connection_id, connection_id)]
