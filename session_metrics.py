"""Token/context counters from OpenClaw's per-agent ``sessions.json`` store."""

import json
import os

from config import AGENTS_ROOT


def default_session_info():
    """Return the zeroed metrics used whenever the store cannot be read."""
    return {'model': 'unknown', 'totalTokens': 0, 'contextTokens': 0, 'updatedAt': None}


def sessions_store_path(agent_id, agents_root=None):
    """Locate the session store for one agent."""
    return os.path.join(agents_root or AGENTS_ROOT, str(agent_id), 'sessions', 'sessions.json')


def load_sessions_store(agent_id, agents_root=None):
    """Load the raw session store mapping; raises on missing or malformed files."""
    with open(sessions_store_path(agent_id, agents_root), 'r', encoding='utf-8') as fp:
        data = json.load(fp)
    if not isinstance(data, dict):
        raise ValueError('sessions.json is not an object')
    return data


def format_model(row):
    """Render ``provider/model`` when both parts are known."""
    model = row.get('model')
    provider = row.get('modelProvider')
    if provider and model:
        return f'{provider}/{model}'
    return model or 'unknown'


def _as_int(value):
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def get_session_info(agent, agents_root=None):
    """Read fresh metrics for an agent's session key, never raising."""
    try:
        store = load_sessions_store(agent['id'], agents_root)
        row = store.get(agent.get('sessionKey')) or {}
        if not isinstance(row, dict):
            return default_session_info()
        return {
            'model': format_model(row),
            'totalTokens': _as_int(row.get('totalTokens')),
            'contextTokens': _as_int(row.get('contextTokens')),
            'updatedAt': row.get('updatedAt') or None,
        }
    except Exception:
        return default_session_info()


def read_all_sessions(agents, agents_root=None):
    """Map agent id to metrics for every registered agent."""
    return {agent['id']: get_session_info(agent, agents_root) for agent in agents}
