"""OpenClaw multi-agent workbench backend.

A thin proxy between the dashboard and an OpenClaw installation: it serves
per-agent transcripts (recent window or byte-offset increments), token and
context counters from the session stores, host facts, and forwards chat
messages and commands to the OpenClaw gateway.
"""

from flask import Flask, Response, jsonify, request
from flask_socketio import SocketIO
import threading
import time

import config
from agents import get_agent, get_agents
from gateway import GatewayChannel, GatewayError, forward_chat
from session_metrics import read_all_sessions
from system_stats import read_system_stats
from transcript import clamp_limit, read_transcript_increment, read_transcript_recent

app = Flask(__name__)
socketio = SocketIO(app, cors_allowed_origins="*")

gateway_channel = GatewayChannel()

connected_clients = set()
clients_lock = threading.Lock()
metrics_feed_started = False
metrics_feed_lock = threading.Lock()


def public_agent(agent):
    """Agent fields safe to hand to the dashboard."""
    return {
        'id': agent['id'],
        'name': agent['name'],
        'emoji': agent['emoji'],
        'sessionKey': agent['sessionKey'],
    }


def config_payload(refresh=False):
    """Build the dashboard bootstrap payload."""
    return {
        'gatewayHttp': config.GATEWAY_HTTP,
        'gatewayWs': config.GATEWAY_WS,
        'agents': [public_agent(a) for a in get_agents(refresh=refresh)],
    }


def metrics_payload():
    """Collect the slow-cadence feed: session counters plus host facts."""
    return {
        'sessions': read_all_sessions(get_agents()),
        'system': read_system_stats(),
    }


def agent_not_found():
    return jsonify({'error': 'agent not found'}), 404


@app.route('/ready')
def ready():
    """Return lightweight readiness status for frontend bootstrap retries."""
    return {'ready': True}


@app.route('/api/config')
def api_config():
    """Return gateway endpoints and the agent registry."""
    refresh = request.args.get('refresh', '').strip().lower() in {'1', 'true', 'yes'}
    return config_payload(refresh=refresh)


@app.route('/api/sessions')
def api_sessions():
    """Return token/context counters for every agent."""
    return {'sessions': read_all_sessions(get_agents())}


@app.route('/api/transcript/<agent_id>')
def api_transcript_recent(agent_id):
    """Return the most recent turns of an agent's transcript."""
    agent = get_agent(agent_id)
    if not agent:
        return agent_not_found()
    limit = clamp_limit(request.args.get('limit') or config.DEFAULT_RECENT_LIMIT)
    return read_transcript_recent(agent['transcriptPath'], limit)


@app.route('/api/transcript/<agent_id>/poll')
def api_transcript_poll(agent_id):
    """Return only what was appended to an agent's transcript since ``offset``."""
    agent = get_agent(agent_id)
    if not agent:
        return agent_not_found()
    return read_transcript_increment(agent['transcriptPath'], request.args.get('offset') or 0)


@app.route('/api/system')
def api_system():
    """Return CPU/RAM/GPU usage and gateway liveness."""
    return read_system_stats()


@app.route('/api/chat', methods=['POST'])
def api_chat():
    """Forward a chat completion to the gateway and pass its answer through."""
    body = request.get_json(silent=True) or {}
    agent_id = body.get('agentId')
    messages = body.get('messages')
    if not agent_id or not isinstance(messages, list) or not messages:
        return jsonify({'error': 'agentId and messages are required'}), 400
    try:
        status, payload, content_type = forward_chat(
            agent_id,
            body.get('sessionKey'),
            messages,
            stream=body.get('stream', False),
        )
    except Exception as e:
        print(f'[GATEWAY] Chat forward for {agent_id} failed: {e}')
        return jsonify({'error': str(e)}), 500
    return Response(payload, status=status, content_type=content_type)


@app.route('/api/command', methods=['POST'])
def api_command():
    """Deliver a command over the gateway socket, falling back to one-shot chat."""
    body = request.get_json(silent=True) or {}
    agent_id = body.get('agentId')
    command = body.get('command')
    if not agent_id or not isinstance(command, str) or not command.strip():
        return jsonify({'error': 'agentId and command are required'}), 400
    agent = get_agent(agent_id)
    if not agent:
        return agent_not_found()

    try:
        result = gateway_channel.send_command(agent['sessionKey'], command)
        return {'ok': True, 'via': 'ws', 'result': result}
    except GatewayError as e:
        print(f'[WS] Command for {agent_id} failed over socket ({e}); using HTTP')

    messages = [{'role': 'user', 'content': command}]
    try:
        status, _payload, _content_type = forward_chat(agent_id, agent['sessionKey'], messages)
    except Exception as e:
        print(f'[GATEWAY] Command fallback for {agent_id} failed: {e}')
        return jsonify({'ok': False, 'error': str(e)}), 502
    ok = status < 400
    return jsonify({'ok': ok, 'via': 'http', 'status': status}), (200 if ok else 502)


def metrics_feed():  # pragma: no cover
    """Push session counters and host facts to connected dashboards."""
    print('[METRICS] Metrics feed started')
    while True:
        with clients_lock:
            has_clients = bool(connected_clients)
        if has_clients:
            try:
                socketio.emit('metrics', metrics_payload())
            except Exception as e:
                print(f'[METRICS] feed error: {e}')
        time.sleep(config.METRICS_POLL_SEC)


def ensure_metrics_feed_started():  # pragma: no cover
    """Thread-safe bootstrap for the background metrics feed."""
    global metrics_feed_started
    with metrics_feed_lock:
        if metrics_feed_started:
            return
        metrics_feed_started = True
        threading.Thread(target=metrics_feed, daemon=True).start()


@socketio.on('connect')
def handle_connect():  # pragma: no cover
    """Register a dashboard and push the bootstrap payload."""
    sid = request.sid
    with clients_lock:
        connected_clients.add(sid)
    print("Client connected")
    ensure_metrics_feed_started()
    socketio.emit('config', config_payload(), room=sid)


@socketio.on('disconnect')
def handle_disconnect():  # pragma: no cover
    """Forget a disconnected dashboard."""
    with clients_lock:
        connected_clients.discard(request.sid)
    print("Client disconnected")


if __name__ == '__main__':  # pragma: no cover
    get_agents()
    print(f'[BOOT] Workbench API listening on http://localhost:{config.PORT}')
    socketio.run(app, host=config.HOST, port=config.PORT, allow_unsafe_werkzeug=True)
