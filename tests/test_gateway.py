import json
import queue
import time

import pytest

import gateway
from gateway import GatewayChannel, GatewayError, GatewayTimeout


class FakeSocket:
    """Scripted stand-in for a websocket-client connection."""

    def __init__(self, reply=True, accept=True):
        self.inbox = queue.Queue()
        self.sent = []
        self.closed = False
        self.reply = reply
        self.accept = accept
        self.inbox.put(json.dumps({"type": "event", "event": "connect.challenge", "payload": {"nonce": "n"}}))

    def recv(self):
        item = self.inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    def send(self, raw):
        frame = json.loads(raw)
        self.sent.append(frame)
        if frame["method"] == "connect":
            if self.accept:
                self.inbox.put(json.dumps({"type": "res", "id": frame["id"], "ok": True, "payload": {}}))
            else:
                self.inbox.put(json.dumps({"type": "res", "id": frame["id"], "ok": False, "error": "bad token"}))
        elif self.reply == "error":
            self.inbox.put(json.dumps({"type": "res", "id": frame["id"], "ok": False, "error": {"message": "no such session"}}))
        elif self.reply:
            self.inbox.put(json.dumps({"type": "event", "event": "tick"}))
            self.inbox.put(json.dumps({"type": "res", "id": frame["id"], "ok": True, "payload": {"echo": frame["params"]}}))

    def settimeout(self, value):
        pass

    def close(self):
        self.closed = True
        self.inbox.put(ConnectionError("closed"))


class Connector:
    def __init__(self, **socket_kwargs):
        self.sockets = []
        self.urls = []
        self.socket_kwargs = socket_kwargs

    def __call__(self, url, timeout=None):
        self.urls.append(url)
        sock = FakeSocket(**self.socket_kwargs)
        self.sockets.append(sock)
        return sock


def wait_for(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_channel_connects_lazily_and_reuses_connection():
    connector = Connector()
    channel = GatewayChannel(url="ws://gw:18789", token="secret", connect=connector)
    assert channel.state == gateway.DISCONNECTED
    assert connector.sockets == []

    first = channel.request("status", {"a": 1})
    second = channel.request("status", {"b": 2})

    assert first == {"echo": {"a": 1}}
    assert second == {"echo": {"b": 2}}
    assert channel.state == gateway.READY
    assert connector.urls == ["ws://gw:18789/"]
    handshake = connector.sockets[0].sent[0]
    assert handshake["method"] == "connect"
    assert handshake["params"]["auth"] == {"token": "secret"}
    assert channel.pending_count == 0
    channel.close()


def test_request_timeout_removes_pending_entry():
    channel = GatewayChannel(url="ws://gw", token="t", connect=Connector(reply=False))
    with pytest.raises(GatewayTimeout):
        channel.request("chat.send", {}, timeout=0.05)
    assert channel.pending_count == 0
    channel.close()


def test_error_response_raises_gateway_error():
    channel = GatewayChannel(url="ws://gw", token="t", connect=Connector(reply="error"))
    with pytest.raises(GatewayError, match="no such session"):
        channel.request("chat.send", {})
    assert not isinstance(GatewayError("x"), GatewayTimeout)
    channel.close()


def test_lost_connection_reconnects_on_next_request():
    connector = Connector()
    channel = GatewayChannel(url="ws://gw", token="t", connect=connector)
    channel.request("status")

    connector.sockets[0].inbox.put(ConnectionError("reset by peer"))
    assert wait_for(lambda: channel.state == gateway.DISCONNECTED)

    assert channel.request("status", {"again": True}) == {"echo": {"again": True}}
    assert len(connector.sockets) == 2
    channel.close()


def test_connection_loss_fails_pending_requests():
    connector = Connector(reply=False)
    channel = GatewayChannel(url="ws://gw", token="t", connect=connector)
    channel.ensure_connected()
    connector.sockets[0].inbox.put(ConnectionError("gone"))
    with pytest.raises(GatewayError):
        channel.request("status", timeout=2)
    assert channel.pending_count == 0


def test_rejected_handshake_leaves_channel_disconnected():
    connector = Connector(accept=False)
    channel = GatewayChannel(url="ws://gw", token="t", connect=connector)
    with pytest.raises(GatewayError, match="rejected"):
        channel.request("status")
    assert channel.state == gateway.DISCONNECTED
    assert connector.sockets[0].closed is True


def test_unreachable_gateway_raises_gateway_error():
    def refuse(url, timeout=None):
        raise ConnectionRefusedError("refused")

    channel = GatewayChannel(url="ws://gw", token="t", connect=refuse)
    with pytest.raises(GatewayError, match="connect failed"):
        channel.send_command("agent:main:main", "/thinking high")
    assert channel.state == gateway.DISCONNECTED


def test_send_command_targets_session():
    connector = Connector()
    channel = GatewayChannel(url="ws://gw", token="t", connect=connector)
    result = channel.send_command("agent:main:main", "/reasoning on")
    params = result["echo"]
    assert params["sessionKey"] == "agent:main:main"
    assert params["message"] == "/reasoning on"
    assert params["idempotencyKey"]
    assert connector.sockets[0].sent[-1]["method"] == "chat.send"
    channel.close()


def test_read_gateway_token_prefers_environment(tmp_path, monkeypatch):
    cfg = tmp_path / "openclaw.json"
    cfg.write_text(json.dumps({"gateway": {"auth": {"token": "from-file"}}}), encoding="utf-8")

    monkeypatch.delenv("OPENCLAW_TOKEN", raising=False)
    assert gateway.read_gateway_token(str(cfg)) == "from-file"
    assert gateway.read_gateway_token(str(tmp_path / "missing.json")) is None

    monkeypatch.setenv("OPENCLAW_TOKEN", "from-env")
    assert gateway.read_gateway_token(str(cfg)) == "from-env"


def test_build_chat_request_sets_openclaw_headers():
    headers, payload = gateway.build_chat_request(
        "coder", "agent:coder:main", [{"role": "user", "content": "hi"}], token="tok"
    )
    assert headers["Authorization"] == "Bearer tok"
    assert headers["x-openclaw-agent-id"] == "coder"
    assert headers["x-openclaw-session-key"] == "agent:coder:main"
    assert payload == {"model": "openclaw:coder", "stream": False, "messages": [{"role": "user", "content": "hi"}]}

    headers, _ = gateway.build_chat_request("coder", None, [], token=None)
    assert "Authorization" not in headers
    assert "x-openclaw-session-key" not in headers
