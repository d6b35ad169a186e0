"""Rendering of agent panels: context usage tiers and rich renderables."""

from rich.console import Group
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

import config

TIER_STYLES = {'green': 'green', 'yellow': 'yellow', 'red': 'red'}
TIER_ICONS = {'green': '🟢', 'yellow': '🟡', 'red': '🔴'}
ALERT_TEXT = {
    'warning': '💡 Context > 70%, consider saving memory',
    'critical': '⚠️ Context almost full! Save memory now',
}


def context_usage(session):
    """Percentage of the context window used; 0 when the window size is unknown."""
    session = session or {}
    total = session.get('totalTokens') or 0
    window = session.get('contextTokens') or 0
    if window <= 0:
        return 0.0
    return total / window * 100


def severity(pct):
    if pct < 60:
        return 'green'
    if pct < 80:
        return 'yellow'
    return 'red'


def memory_alert(pct):
    """Alert level prompting the user to save agent memory before compaction."""
    if pct >= 85:
        return 'critical'
    if pct >= 70:
        return 'warning'
    return None


def grid_columns(count):
    """Columns for a grid of ``count`` panels."""
    if count <= 1:
        return 1
    if count in (2, 4):
        return 2
    return 3


def speaker(role, display_name):
    return 'You' if role == 'user' else display_name


def render_panel(agent, session, state, custom_name=None):
    """Build one agent panel from its latest state and metrics snapshot."""
    session = session or {}
    state = state or {}
    display_name = custom_name or agent.get('name') or agent.get('id')
    pct = context_usage(session)
    tier = severity(pct)
    total = session.get('totalTokens') or 0
    window = session.get('contextTokens') or 0

    header = Table.grid(expand=True)
    header.add_column(ratio=1)
    header.add_column(justify='right')
    header.add_row(
        Text(f'{TIER_ICONS[tier]} Context {pct:.0f}%', style=TIER_STYLES[tier]),
        Text(f'{total:,}/{window:,}', style='dim'),
    )
    parts = [
        Text(session.get('model') or 'unknown', style='dim'),
        header,
        ProgressBar(total=100, completed=min(100, pct), complete_style=TIER_STYLES[tier]),
    ]

    alert = memory_alert(pct)
    if alert:
        parts.append(Text(ALERT_TEXT[alert], style='bold red' if alert == 'critical' else 'yellow'))

    thinking = state.get('thinking') or ''
    if thinking:
        parts.append(Panel(Text(thinking[-600:], style='italic dim'), title='💭 Thinking', border_style='dim'))

    chat = Text()
    for message in (state.get('messages') or [])[-config.VISIBLE_MESSAGES:]:
        role = message.get('role')
        chat.append(f'{speaker(role, display_name)}: ', style='bold cyan' if role == 'user' else 'bold magenta')
        chat.append(f'{message.get("content") or ""}\n')
    parts.append(chat)

    title = f'{agent.get("emoji") or ""} {display_name} ({agent.get("id")})'.strip()
    return Panel(Group(*parts), title=title, title_align='left', border_style=TIER_STYLES[tier])


def render_header(system, online=True):
    """One-line host summary: CPU, RAM, GPU and gateway status."""
    system = system or {}
    gpu = system.get('gpu') or {}
    if gpu.get('available'):
        gpu_text = (
            f'{gpu.get("usage")}% '
            f'({round((gpu.get("memoryUsed") or 0) / 1024, 1)}/{round((gpu.get("memoryTotal") or 0) / 1024, 1)}GB, '
            f'{gpu.get("temperature")}°C)'
        )
    else:
        gpu_text = 'N/A'
    gateway = system.get('gateway') or {}
    gateway_text = '🟢 Online' if gateway.get('online') else '🔴 Offline'
    cpu = system.get('cpuPercent', '--')
    ram = f'{system["ramUsedGb"]}/{system["ramTotalGb"]} GB' if 'ramUsedGb' in system else '--'
    line = Text(f'CPU: {cpu}%   RAM: {ram}   GPU: {gpu_text}   Gateway: {gateway_text}')
    if not online:
        line.append('   (backend offline, showing last known values)', style='bold red')
    return line


def render_dashboard(agents, sessions, states, system=None, online=True, custom_names=None):
    """Lay out the header and up to ``MAX_PANELS`` agent panels."""
    custom_names = custom_names or {}
    selected = list(agents)[:config.MAX_PANELS]
    panels = [
        render_panel(a, (sessions or {}).get(a['id']), (states or {}).get(a['id']), custom_names.get(a['id']))
        for a in selected
    ]
    columns = grid_columns(len(panels))
    grid = Table.grid(expand=True)
    for _ in range(columns):
        grid.add_column(ratio=1)
    for start in range(0, len(panels), columns):
        row = panels[start:start + columns]
        grid.add_row(*(row + [Text('')] * (columns - len(row))))
    title = Text('🤖 Multi-Agent Workbench', style='bold')
    return Group(title, render_header(system, online), grid)
