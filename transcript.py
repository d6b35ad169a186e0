"""Transcript parsing and byte-offset tailing for OpenClaw session logs.

A session transcript is an append-only JSONL file written by the agent
process. Only ``{"type": "message", "message": {...}}`` rows carrying a user
or assistant turn are surfaced; everything else is dropped silently.
"""

import json
import math
import os
import re

from config import MESSAGE_CAP, THINKING_CAP, DEFAULT_RECENT_LIMIT

LINE_SPLIT_RE = re.compile(r'\r?\n')
CHAT_ROLES = {'user', 'assistant'}
REASONING_TYPES = {'thinking', 'reasoning'}


def empty_result(offset=0):
    """Return the canonical 'nothing new' transcript payload."""
    return {'messages': [], 'thinking': '', 'offset': offset}


def cap_thinking(text, limit=THINKING_CAP):
    """Keep only the trailing ``limit`` characters of reasoning text."""
    if not text:
        return ''
    return text[-limit:]


def join_thinking(previous, fresh, limit=THINKING_CAP):
    """Append a reasoning fragment with a blank-line join, then re-cap."""
    if not fresh:
        return cap_thinking(previous or '', limit)
    if not previous:
        return cap_thinking(fresh, limit)
    return cap_thinking(f'{previous}\n\n{fresh}', limit)


def _text_item_value(item):
    value = item.get('text')
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get('value'), str):
        return value['value']
    return None


def _reasoning_item_value(item):
    value = item.get('thinking') or item.get('reasoning') or item.get('text')
    if isinstance(value, str):
        return value
    return None


def parse_message_record(line):
    """Parse one JSONL line into ``{role, content, thinking}`` or ``None``.
    Malformed JSON, non-message rows and system/tool roles are all dropped.
    """
    if not isinstance(line, str) or not line.strip():
        return None
    try:
        obj = json.loads(line)
    except Exception:
        return None
    if not isinstance(obj, dict) or obj.get('type') != 'message':
        return None
    message = obj.get('message')
    if not isinstance(message, dict):
        return None

    role = message.get('role')
    if role not in CHAT_ROLES:
        return None

    content = ''
    thinking = ''
    raw = message.get('content')
    if isinstance(raw, str):
        content = raw
    elif isinstance(raw, list):
        text_parts = []
        thinking_parts = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            item_type = item.get('type')
            if item_type == 'text':
                value = _text_item_value(item)
                if value is not None:
                    text_parts.append(value)
            elif item_type in REASONING_TYPES:
                value = _reasoning_item_value(item)
                if value is not None:
                    thinking_parts.append(value)
        content = '\n'.join(text_parts).strip()
        thinking = '\n'.join(thinking_parts).strip()

    if not content and not thinking:
        return None
    return {'role': role, 'content': content, 'thinking': thinking}


def parse_lines(text):
    """Parse a decoded chunk into ordered chat turns and reasoning fragments."""
    messages = []
    thinking = []
    for line in LINE_SPLIT_RE.split(text or ''):
        if not line:
            continue
        record = parse_message_record(line)
        if not record:
            continue
        if record['content']:
            messages.append({'role': record['role'], 'content': record['content']})
        if record['thinking']:
            thinking.append(record['thinking'])
    return messages, thinking


def clamp_limit(value, default=DEFAULT_RECENT_LIMIT):
    """Coerce a requested recent-window size into [1, MESSAGE_CAP]."""
    try:
        limit = int(float(value))
    except Exception:
        limit = default
    return max(1, min(limit, MESSAGE_CAP))


def sanitize_offset(value, size):
    """Return a usable start offset; anything out of range restarts at 0."""
    try:
        offset = float(value)
    except Exception:
        return 0
    if not math.isfinite(offset):
        return 0
    offset = int(offset)
    if offset < 0 or offset > size:
        return 0
    return offset


def read_transcript_recent(path, limit=DEFAULT_RECENT_LIMIT):
    """Read the whole transcript and return its last ``limit`` turns.
    The returned offset is the byte length read, so the next increment
    starts exactly where this read stopped.
    """
    if not path or not os.path.isfile(path):
        return empty_result()
    try:
        with open(path, 'rb') as fp:
            data = fp.read()
    except OSError as e:
        print(f'[TRANSCRIPT] Failed to read {path}: {e}')
        return empty_result()

    messages, thinking = parse_lines(data.decode('utf-8', errors='replace'))
    limit = max(1, int(limit))
    return {
        'messages': messages[-limit:],
        'thinking': cap_thinking('\n\n'.join(thinking)),
        'offset': len(data),
    }


def read_transcript_increment(path, offset=0):
    """Read only the bytes appended since ``offset``.
    A trailing partial line fails to parse and is dropped, but its bytes still
    count as delivered. An offset beyond the file size (truncation or rotation)
    restarts from 0 and marks the payload with ``resync``.
    """
    if not path or not os.path.isfile(path):
        return empty_result()
    try:
        with open(path, 'rb') as fp:
            size = os.fstat(fp.fileno()).st_size
            start = sanitize_offset(offset, size)
            span = size - start
            if span <= 0:
                return empty_result(size)
            fp.seek(start)
            data = fp.read(span)
    except OSError as e:
        print(f'[TRANSCRIPT] Failed to read increment from {path}: {e}')
        return empty_result()

    messages, thinking = parse_lines(data.decode('utf-8', errors='replace'))
    result = {
        'messages': messages,
        'thinking': cap_thinking('\n\n'.join(thinking)),
        'offset': size,
    }
    if start == 0 and _requested_nonzero(offset):
        result['resync'] = True
    return result


def _requested_nonzero(offset):
    try:
        return float(offset) != 0
    except Exception:
        return False
