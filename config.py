"""Runtime settings for the OpenClaw multi-agent workbench.

All values come from environment variables with safe fallbacks, so the
backend, the terminal watcher and the MCP server share one view of paths,
gateway location and polling cadence.
"""

import os


def _env_float(name, default, minimum=None, maximum=None):
    try:
        value = float(os.environ.get(name, default))
    except Exception:
        value = float(default)
    if minimum is not None:
        value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def _env_int(name, default):
    try:
        return int(os.environ.get(name, default))
    except Exception:
        return int(default)


OPENCLAW_HOME = os.path.expanduser(os.environ.get('OPENCLAW_HOME', '~/.openclaw'))
AGENTS_ROOT = os.path.join(OPENCLAW_HOME, 'agents')
OPENCLAW_CONFIG_PATH = os.path.join(OPENCLAW_HOME, 'openclaw.json')
AGENTS_FILE = os.environ.get('WORKBENCH_AGENTS_FILE', '').strip()
WATCHER_PREFS_PATH = os.path.expanduser(
    os.environ.get('WORKBENCH_WATCHER_PREFS', os.path.join(OPENCLAW_HOME, 'workbench-watcher.json'))
)

GATEWAY_HTTP = os.environ.get('OPENCLAW_GATEWAY_URL', 'http://localhost:18789').rstrip('/')
GATEWAY_WS = 'ws' + GATEWAY_HTTP[4:] if GATEWAY_HTTP.lower().startswith('http') else GATEWAY_HTTP
GATEWAY_TIMEOUT_SEC = _env_float('WORKBENCH_GATEWAY_TIMEOUT_SEC', '30', minimum=1.0)
GATEWAY_PROBE_TIMEOUT_SEC = _env_float('WORKBENCH_GATEWAY_PROBE_TIMEOUT_SEC', '2', minimum=0.2)

HOST = os.environ.get('WORKBENCH_HOST', '0.0.0.0')
PORT = _env_int('WORKBENCH_PORT', '3001')
BASE_URL = os.environ.get('WORKBENCH_BASE_URL', f'http://127.0.0.1:{PORT}').rstrip('/')
HTTP_TIMEOUT_SEC = _env_float('WORKBENCH_HTTP_TIMEOUT_SEC', '10', minimum=0.5)

METRICS_POLL_SEC = _env_float('WORKBENCH_METRICS_POLL_SEC', '2', minimum=0.5)
TRANSCRIPT_POLL_SEC = _env_float('WORKBENCH_TRANSCRIPT_POLL_SEC', '1', minimum=0.2)

# Display bounds, not correctness guarantees.
MESSAGE_CAP = 200
THINKING_CAP = 12000
DEFAULT_RECENT_LIMIT = 50
SEED_LIMIT = 60
MAX_PANELS = 9
VISIBLE_MESSAGES = 80
