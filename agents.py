"""Agent registry: which OpenClaw agents the workbench shows and where their transcripts live."""

import json
import os
import threading

import config
from session_metrics import load_sessions_store

DEFAULT_EMOJI = '🤖'

_registry = None
_registry_lock = threading.Lock()


def default_session_key(agent_id):
    """Return the main-session key OpenClaw assigns to an agent."""
    return f'agent:{agent_id}:main'


def latest_session_file(sessions_dir):
    """Return the most recently modified JSONL transcript in a sessions directory."""
    try:
        candidates = [
            os.path.join(sessions_dir, name)
            for name in os.listdir(sessions_dir)
            if name.endswith('.jsonl')
        ]
    except OSError:
        return None
    if not candidates:
        return None
    return max(candidates, key=os.path.getmtime)


def resolve_transcript_path(agent_id, session_key, agents_root=None):
    """Find the transcript backing a session key.
    Prefers the store's ``sessionFile``, then ``<sessionId>.jsonl``, then the
    newest JSONL file in the agent's sessions directory.
    """
    root = agents_root or config.AGENTS_ROOT
    sessions_dir = os.path.join(root, agent_id, 'sessions')
    try:
        row = load_sessions_store(agent_id, root).get(session_key) or {}
    except Exception:
        row = {}
    if isinstance(row, dict):
        session_file = row.get('sessionFile')
        if isinstance(session_file, str) and session_file:
            return os.path.expanduser(session_file)
        session_id = row.get('sessionId')
        if isinstance(session_id, str) and session_id:
            candidate = os.path.join(sessions_dir, f'{session_id}.jsonl')
            if os.path.isfile(candidate):
                return candidate
    return latest_session_file(sessions_dir)


def build_agent(entry, agents_root=None):
    """Fill registry defaults for one agent entry; returns None when unusable."""
    if not isinstance(entry, dict):
        return None
    agent_id = str(entry.get('id') or '').strip()
    if not agent_id:
        return None
    session_key = entry.get('sessionKey') or default_session_key(agent_id)
    transcript_path = entry.get('transcriptPath')
    if transcript_path:
        transcript_path = os.path.expanduser(transcript_path)
    else:
        transcript_path = resolve_transcript_path(agent_id, session_key, agents_root)
    return {
        'id': agent_id,
        'name': entry.get('name') or agent_id.capitalize(),
        'emoji': entry.get('emoji') or DEFAULT_EMOJI,
        'sessionKey': session_key,
        'transcriptPath': transcript_path,
    }


def load_agents_file(path, agents_root=None):
    """Load an explicit agent list from JSON."""
    try:
        with open(path, 'r', encoding='utf-8') as fp:
            entries = json.load(fp)
    except Exception as e:
        print(f'[BOOT] Failed to load agents file {path}: {e}')
        return []
    if not isinstance(entries, list):
        print(f'[BOOT] Agents file {path} must contain a JSON list')
        return []
    agents = [build_agent(entry, agents_root) for entry in entries]
    return [a for a in agents if a]


def discover_agents(agents_root=None):
    """Discover agents from ``<agents_root>/<id>/sessions`` directories."""
    root = agents_root or config.AGENTS_ROOT
    try:
        names = sorted(os.listdir(root))
    except OSError:
        return []
    agents = []
    for name in names:
        if not os.path.isdir(os.path.join(root, name, 'sessions')):
            continue
        agent = build_agent({'id': name}, root)
        if agent:
            agents.append(agent)
    return agents


def load_agents(agents_file=None, agents_root=None):
    """Build the registry from the agents file when configured, else by discovery."""
    agents_file = config.AGENTS_FILE if agents_file is None else agents_file
    if agents_file:
        return load_agents_file(agents_file, agents_root)
    return discover_agents(agents_root)


def get_agents(refresh=False):
    """Return the cached registry, rebuilding it on first use or when asked."""
    global _registry
    with _registry_lock:
        if _registry is None or refresh:
            _registry = load_agents()
            print(f'[BOOT] Loaded {len(_registry)} agent(s): {[a["id"] for a in _registry]}')
        return list(_registry)


def set_agents(agents):
    """Replace the registry (used by tests and embedding callers)."""
    global _registry
    with _registry_lock:
        _registry = [a for a in (build_agent(entry) for entry in agents) if a]
        return list(_registry)


def get_agent(agent_id):
    """Look up one registered agent by id."""
    for agent in get_agents():
        if agent['id'] == agent_id:
            return agent
    return None
