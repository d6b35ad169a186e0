"""Client-side poll coordinator.

Keeps one transcript state per agent (messages, reasoning text, byte offset),
seeds it from a recent-window read, then merges byte-offset increments into
it on a fixed cadence. Session counters and host facts are polled on a
separate, slower cadence and always replaced wholesale.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import config
from client import WorkbenchClient, WorkbenchError
from transcript import cap_thinking, join_thinking

UNINITIALIZED = 'uninitialized'
SEEDED = 'seeded'
POLLING = 'polling'

PRESET_PROMPTS = {
    'diary': 'Write a diary entry recording the key points and decisions of our recent conversation.',
    'progress': 'Save your current work progress to the diary: what you are doing, how far you got, and the next steps.',
    'compact': (
        'Context is almost full! Right now: 1) write a detailed diary entry saving everything important '
        '2) tell me when it is safe to compact.'
    ),
}


def normalize_messages(items):
    """Keep only ``{role, content}`` pairs with non-empty content."""
    out = []
    for item in items or []:
        if not isinstance(item, dict):
            continue
        content = item.get('content') or ''
        if content:
            out.append({'role': item.get('role'), 'content': content})
    return out


def new_agent_state():
    return {'messages': [], 'thinking': '', 'offset': 0, 'status': UNINITIALIZED}


def merge_increment(state, result, message_cap=config.MESSAGE_CAP, thinking_cap=config.THINKING_CAP):
    """Return the state after applying one poll response.
    Turns are appended (never replaced) and capped to the most recent
    ``message_cap``; reasoning is joined with a blank line and re-capped. The
    offset always advances to the response offset, even on an empty tick. A
    ``resync`` response (file truncated or rotated) replaces the transcript
    instead of appending a second copy of it.
    """
    fresh = normalize_messages(result.get('messages'))
    thinking = result.get('thinking') or ''
    merged = dict(state)

    if result.get('resync'):
        merged['messages'] = fresh[-message_cap:]
        merged['thinking'] = cap_thinking(thinking, thinking_cap)
    elif fresh or thinking:
        merged['messages'] = (list(state.get('messages') or []) + fresh)[-message_cap:]
        if thinking:
            merged['thinking'] = join_thinking(state.get('thinking') or '', thinking, thinking_cap)

    offset = result.get('offset')
    if isinstance(offset, int) and not isinstance(offset, bool) and offset >= 0:
        merged['offset'] = offset
    merged['status'] = POLLING
    return merged


def build_content(text, image=None):
    """Build chat content: a plain string for text only, typed parts otherwise."""
    parts = []
    if text:
        parts.append({'type': 'text', 'text': text})
    if image:
        parts.append({'type': 'image_url', 'image_url': {'url': image}})
    if len(parts) == 1 and parts[0]['type'] == 'text':
        return text
    return parts


class PollCoordinator:
    """Owns every agent's transcript state for one dashboard session."""

    def __init__(self, client=None, seed_limit=config.SEED_LIMIT,
                 metrics_interval=config.METRICS_POLL_SEC,
                 transcript_interval=config.TRANSCRIPT_POLL_SEC,
                 message_cap=config.MESSAGE_CAP, thinking_cap=config.THINKING_CAP,
                 max_workers=4):
        self.client = client or WorkbenchClient()
        self.seed_limit = seed_limit
        self.metrics_interval = metrics_interval
        self.transcript_interval = transcript_interval
        self.message_cap = message_cap
        self.thinking_cap = thinking_cap
        self.agents = []
        self.sessions = {}
        self.system = None
        self.online = False
        self._states = {}
        self._busy = set()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._stop = threading.Event()
        self._threads = []
        self.max_workers = max_workers
        self._pool = None

    # Registry and seeding

    def load_agents(self, refresh=False):
        """Fetch the agent list; new agents start uninitialized."""
        payload = self.client.config(refresh=refresh)
        agents = [a for a in (payload.get('agents') or []) if isinstance(a, dict) and a.get('id')]
        with self._lock:
            self.agents = agents
            for agent in agents:
                self._states.setdefault(agent['id'], new_agent_state())
        return agents

    def agent_ids(self):
        with self._lock:
            return [a['id'] for a in self.agents]

    def get_agent(self, agent_id):
        with self._lock:
            for agent in self.agents:
                if agent['id'] == agent_id:
                    return agent
        return None

    def _claim(self, agent_id, wait=False):
        """Mark an agent busy; without ``wait`` a busy agent is refused."""
        with self._idle:
            while agent_id in self._busy:
                if not wait:
                    return False
                self._idle.wait()
            self._busy.add(agent_id)
            return True

    def _release(self, agent_id):
        with self._idle:
            self._busy.discard(agent_id)
            self._idle.notify_all()

    def seed(self, agent_id):
        """Initialize one agent from a fresh recent-window read.
        Waits for an in-flight tick on the same agent so the two never write
        the agent's offset concurrently.
        """
        self._claim(agent_id, wait=True)
        try:
            return self._seed(agent_id)
        finally:
            self._release(agent_id)

    def _seed(self, agent_id):
        try:
            result = self.client.transcript_recent(agent_id, self.seed_limit)
        except WorkbenchError as e:
            print(f'[POLL] Seeding {agent_id} failed: {e}')
            return False
        if not isinstance(result, dict):
            print(f'[POLL] Seeding {agent_id} failed: unexpected {type(result).__name__} response')
            return False
        offset = result.get('offset')
        state = {
            'messages': normalize_messages(result.get('messages'))[-self.message_cap:],
            'thinking': cap_thinking(result.get('thinking') or '', self.thinking_cap),
            'offset': offset if isinstance(offset, int) and offset >= 0 else 0,
            'status': SEEDED,
        }
        with self._lock:
            self._states[agent_id] = state
        return True

    def seed_all(self):
        return {agent_id: self.seed(agent_id) for agent_id in self.agent_ids()}

    def refresh(self):
        """Rediscover agents and reseed all of them."""
        self.load_agents(refresh=True)
        return self.seed_all()

    # Transcript feed

    def apply_increment(self, agent_id, result, requested_offset=None):
        """Merge one poll response into an agent's state.
        A response read from ``requested_offset`` is dropped once the agent's
        offset has moved on (for example after a reseed).
        """
        if not isinstance(result, dict):
            print(f'[POLL] Ignoring {type(result).__name__} poll response for {agent_id}')
            return False
        with self._lock:
            state = self._states.get(agent_id) or new_agent_state()
            if requested_offset is not None and state['offset'] != requested_offset:
                print(f'[POLL] Dropping stale increment for {agent_id} (offset {requested_offset} -> {state["offset"]})')
                return False
            self._states[agent_id] = merge_increment(state, result, self.message_cap, self.thinking_cap)
        return True

    def poll_agent(self, agent_id):
        """Run one tick for one agent; skipped while the previous tick is in flight."""
        if not self._claim(agent_id):
            return False
        try:
            with self._lock:
                state = dict(self._states.get(agent_id) or new_agent_state())
            if state['status'] == UNINITIALIZED:
                return self._seed(agent_id)
            result = self.client.transcript_poll(agent_id, state['offset'])
            return self.apply_increment(agent_id, result, state['offset'])
        except WorkbenchError as e:
            print(f'[POLL] Poll for {agent_id} failed: {e}')
            return False
        except Exception as e:
            print(f'[POLL] Tick for {agent_id} failed: {e!r}')
            return False
        finally:
            self._release(agent_id)

    def _executor(self):
        with self._lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix='transcript-poll')
            return self._pool

    def poll_transcripts(self, wait=True):
        """Run one tick for every agent, each on its own worker."""
        pool = self._executor()
        futures = {agent_id: pool.submit(self.poll_agent, agent_id) for agent_id in self.agent_ids()}
        if not wait:
            return {}
        return {agent_id: future.result() for agent_id, future in futures.items()}

    # Metrics feed

    def poll_metrics(self):
        """Replace session counters and host facts; keep the last values on failure."""
        try:
            sessions = self.client.sessions()
            system = self.client.system()
        except WorkbenchError as e:
            if self.online:
                print(f'[METRICS] Backend unreachable: {e}')
            self.online = False
            return False
        with self._lock:
            self.sessions = sessions if isinstance(sessions, dict) else {}
            self.system = system
            self.online = True
        return True

    # Sending

    def send_message(self, agent_id, text, image=None):
        """Send a user message; on failure the draft comes back for the input box."""
        text = (text or '').strip()
        if not text and not image:
            return {'ok': False, 'error': 'empty message', 'draft': {'text': text, 'image': image}}
        agent = self.get_agent(agent_id)
        session_key = agent.get('sessionKey') if agent else None
        messages = [{'role': 'user', 'content': build_content(text, image)}]
        try:
            self.client.chat(agent_id, session_key, messages)
        except WorkbenchError as e:
            print(f'[POLL] Send to {agent_id} failed: {e}')
            return {'ok': False, 'error': str(e), 'draft': {'text': text, 'image': image}}
        return {'ok': True}

    def send_command(self, agent_id, command):
        """Send a slash command over the gateway socket, or as a chat message if that fails."""
        try:
            self.client.command(agent_id, command)
            return {'ok': True}
        except WorkbenchError as e:
            print(f'[POLL] Command path for {agent_id} failed ({e}); sending as chat')
        return self.send_message(agent_id, command)

    def send_preset(self, agent_id, name):
        """Send one of the memory-management prompts (diary, progress, compact)."""
        if name not in PRESET_PROMPTS:
            raise KeyError(f'unknown preset: {name}')
        return self.send_message(agent_id, PRESET_PROMPTS[name])

    # Snapshots and lifecycle

    def snapshot(self, agent_id):
        with self._lock:
            state = self._states.get(agent_id) or new_agent_state()
            return {**state, 'messages': list(state['messages'])}

    def status(self, agent_id):
        with self._lock:
            return (self._states.get(agent_id) or new_agent_state())['status']

    def _run_every(self, interval, tick, name):
        while not self._stop.is_set():
            try:
                tick()
            except Exception as e:
                print(f'[POLL] {name} tick failed: {e}')
            self._stop.wait(interval)

    def start(self):
        """Seed every agent, then start the metrics and transcript loops."""
        self._stop.clear()
        try:
            self.load_agents()
        except WorkbenchError as e:
            print(f'[POLL] Loading agents failed, will seed on first tick: {e}')
        self.seed_all()
        self._threads = [
            threading.Thread(target=self._run_every, args=(self.metrics_interval, self.poll_metrics, 'metrics'), daemon=True),
            threading.Thread(target=self._run_every, args=(self.transcript_interval, self._transcript_tick, 'transcript'), daemon=True),
        ]
        for thread in self._threads:
            thread.start()

    def _transcript_tick(self):
        if not self.agent_ids():
            self.load_agents()
        self.poll_transcripts(wait=False)

    def stop(self):
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=2.0)
        self._threads = []
        with self._lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=False)
