"""OpenClaw gateway access: one-shot HTTP completions and a lazy duplex WebSocket channel."""

import json
import os
import threading
import uuid
from concurrent.futures import Future, TimeoutError as FutureTimeout
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

import websocket

import config

DISCONNECTED = 'disconnected'
CONNECTING = 'connecting'
READY = 'ready'

PROTOCOL_VERSION = 3


class GatewayError(Exception):
    """Raised when the gateway cannot be reached or rejects a request."""


class GatewayTimeout(GatewayError):
    """Raised when a gateway request gets no response in time."""


def read_gateway_token(config_path=None):
    """Resolve the gateway token from the environment or openclaw.json."""
    token = os.environ.get('OPENCLAW_TOKEN')
    if token:
        return token
    try:
        with open(config_path or config.OPENCLAW_CONFIG_PATH, 'r', encoding='utf-8') as fp:
            data = json.load(fp)
        return ((data.get('gateway') or {}).get('auth') or {}).get('token') or None
    except Exception:
        return None


def _auth_headers(token):
    return {'Authorization': f'Bearer {token}'} if token else {}


def build_chat_request(agent_id, session_key, messages, stream=False, token=None):
    """Build headers and payload for the gateway's completion endpoint."""
    headers = {'Content-Type': 'application/json', **_auth_headers(token)}
    if session_key:
        headers['x-openclaw-session-key'] = session_key
    headers['x-openclaw-agent-id'] = agent_id
    payload = {
        'model': f'openclaw:{agent_id}',
        'stream': bool(stream),
        'messages': messages,
    }
    return headers, payload


def forward_chat(agent_id, session_key, messages, stream=False, base_url=None, timeout=None):
    """POST a chat completion to the gateway and return ``(status, body, content_type)``.
    Gateway HTTP errors are passed through verbatim; only transport failures raise.
    """
    headers, payload = build_chat_request(agent_id, session_key, messages, stream, read_gateway_token())
    url = f'{(base_url or config.GATEWAY_HTTP).rstrip("/")}/v1/chat/completions'
    request = Request(url=url, data=json.dumps(payload).encode('utf-8'), headers=headers, method='POST')
    try:
        with urlopen(request, timeout=timeout or config.GATEWAY_TIMEOUT_SEC) as response:
            content_type = response.headers.get('Content-Type') or 'application/json'
            return int(response.status), response.read(), content_type
    except HTTPError as exc:
        content_type = exc.headers.get('Content-Type') if exc.headers else None
        try:
            body = exc.read()
        except Exception:
            body = b''
        return int(exc.code), body, content_type or 'application/json'
    except (URLError, OSError) as exc:
        raise GatewayError(f'gateway unreachable: {getattr(exc, "reason", exc)}') from exc


def probe_gateway(base_url=None, timeout=None):
    """Report whether the gateway answers at all (any status below 500)."""
    url = f'{(base_url or config.GATEWAY_HTTP).rstrip("/")}/'
    request = Request(url=url, headers=_auth_headers(read_gateway_token()), method='GET')
    try:
        with urlopen(request, timeout=timeout or config.GATEWAY_PROBE_TIMEOUT_SEC) as response:
            status = int(response.status)
    except HTTPError as exc:
        status = int(exc.code)
    except Exception:
        return {'online': False, 'status': 'offline'}
    online = status < 500
    return {'online': online, 'status': 'online' if online else f'http-{status}'}


class GatewayChannel:
    """Request/response channel over the gateway WebSocket.

    The connection is opened lazily by the first request and reopened on
    demand after it drops. Only one connection attempt runs at a time. Each
    request waits on a future keyed by its id in the pending map; a receiver
    thread resolves futures as ``res`` frames arrive, and a request that times
    out is removed from the map.
    """

    def __init__(self, url=None, token=None, connect=None, connect_timeout=5.0, request_timeout=None):
        self.url = (url or config.GATEWAY_WS).rstrip('/')
        self._token = token
        self._connect = connect or websocket.create_connection
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout or config.GATEWAY_TIMEOUT_SEC
        self.state = DISCONNECTED
        self._ws = None
        self._pending = {}
        self._lock = threading.Lock()
        self._connect_lock = threading.Lock()
        self._send_lock = threading.Lock()

    @property
    def pending_count(self):
        with self._lock:
            return len(self._pending)

    def ensure_connected(self):
        """Open the connection if needed; concurrent callers share one attempt."""
        if self.state == READY:
            return
        with self._connect_lock:
            if self.state == READY:
                return
            self.state = CONNECTING
            try:
                ws = self._open()
            except Exception as exc:
                self.state = DISCONNECTED
                print(f'[WS] Gateway connect failed: {exc}')
                if isinstance(exc, GatewayError):
                    raise
                raise GatewayError(f'gateway connect failed: {exc}') from exc
            with self._lock:
                self._ws = ws
                self.state = READY
            print(f'[WS] Connected to {self.url}')
            threading.Thread(target=self._receive_loop, args=(ws,), daemon=True).start()

    def _open(self):
        ws = self._connect(f'{self.url}/', timeout=self.connect_timeout)
        try:
            ws.recv()  # challenge
            connect_id = f'workbench-connect-{uuid.uuid4().hex[:8]}'
            token = self._token or read_gateway_token()
            ws.send(json.dumps({
                'type': 'req',
                'id': connect_id,
                'method': 'connect',
                'params': {
                    'minProtocol': PROTOCOL_VERSION,
                    'maxProtocol': PROTOCOL_VERSION,
                    'client': {
                        'id': 'workbench',
                        'mode': 'cli',
                        'instanceId': f'workbench-{uuid.uuid4().hex[:8]}',
                    },
                    'role': 'operator',
                    'scopes': ['operator.admin'],
                    'auth': {'token': token},
                },
            }))
            for _ in range(5):
                frame = json.loads(ws.recv())
                if frame.get('type') != 'res' or frame.get('id') != connect_id:
                    continue
                if not frame.get('ok'):
                    raise GatewayError(f'gateway rejected connect: {frame.get("error")}')
                ws.settimeout(None)
                return ws
            raise GatewayError('gateway sent no connect response')
        except Exception:
            try:
                ws.close()
            except Exception:
                pass
            raise

    def _receive_loop(self, ws):
        while True:
            try:
                raw = ws.recv()
            except Exception as exc:
                self._drop(ws, GatewayError(f'gateway connection lost: {exc}'))
                return
            if not raw:
                self._drop(ws, GatewayError('gateway closed the connection'))
                return
            try:
                frame = json.loads(raw)
            except Exception:
                continue
            if not isinstance(frame, dict) or frame.get('type') != 'res':
                continue
            with self._lock:
                future = self._pending.pop(frame.get('id'), None)
            if future is None:
                continue
            if frame.get('ok'):
                future.set_result(frame.get('payload') or {})
            else:
                error = frame.get('error') or {}
                message = error.get('message') if isinstance(error, dict) else str(error)
                future.set_exception(GatewayError(message or 'gateway request failed'))

    def _drop(self, ws, error):
        with self._lock:
            if self._ws is not ws:
                return
            self._ws = None
            self.state = DISCONNECTED
            pending = self._pending
            self._pending = {}
        print(f'[WS] {error}; failing {len(pending)} pending request(s)')
        for future in pending.values():
            if not future.done():
                future.set_exception(error)
        try:
            ws.close()
        except Exception:
            pass

    def request(self, method, params=None, timeout=None):
        """Send one request and block until its response, error or timeout."""
        self.ensure_connected()
        request_id = f'wb-{uuid.uuid4().hex[:12]}'
        future = Future()
        with self._lock:
            ws = self._ws
            if ws is None:
                raise GatewayError('gateway connection lost')
            self._pending[request_id] = future
        frame = {'type': 'req', 'id': request_id, 'method': method, 'params': params or {}}
        try:
            with self._send_lock:
                ws.send(json.dumps(frame))
        except Exception as exc:
            with self._lock:
                self._pending.pop(request_id, None)
            self._drop(ws, GatewayError(f'gateway send failed: {exc}'))
            raise GatewayError(f'gateway send failed: {exc}') from exc
        try:
            return future.result(timeout=timeout or self.request_timeout)
        except FutureTimeout:
            with self._lock:
                self._pending.pop(request_id, None)
            raise GatewayTimeout(f'gateway request {method} timed out')

    def send_command(self, session_key, command, timeout=None):
        """Deliver a slash command (or any text) into a session."""
        return self.request(
            'chat.send',
            {'sessionKey': session_key, 'message': command, 'idempotencyKey': uuid.uuid4().hex},
            timeout=timeout,
        )

    def close(self):
        with self._lock:
            ws = self._ws
        if ws is not None:
            self._drop(ws, GatewayError('gateway channel closed'))
