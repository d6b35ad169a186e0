#!/usr/bin/env python3
"""
Standalone terminal watcher for the multi-agent workbench.
Runs a PollCoordinator against the backend (or directly against the
transcript files with --local) and renders live agent panels.
"""
import argparse
import json
import os
import sys
import time

from rich.console import Console
from rich.live import Live

import config
from client import DirectClient, WorkbenchClient, WorkbenchError
from coordinator import PRESET_PROMPTS, PollCoordinator
from panel import render_dashboard


def parse_names(pairs):
    """Turn ``id=Name`` pairs into a custom display-name map."""
    names = {}
    for pair in pairs or []:
        agent_id, sep, name = pair.partition('=')
        if sep and agent_id.strip() and name.strip():
            names[agent_id.strip()] = name.strip()
    return names


def select_agents(agents, wanted):
    """Keep the requested agents in request order, at most MAX_PANELS."""
    if not wanted:
        return agents[:config.MAX_PANELS]
    by_id = {a['id']: a for a in agents}
    return [by_id[i] for i in wanted if i in by_id][:config.MAX_PANELS]


def empty_prefs():
    return {'agents': [], 'names': {}}


def load_prefs(path=None):
    """Load the saved panel selection and custom names.
    A missing or unreadable file yields empty preferences.
    """
    path = path or config.WATCHER_PREFS_PATH
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        return empty_prefs()
    except Exception as e:
        print(f'[WATCH] Ignoring unreadable preferences {path}: {e}', file=sys.stderr)
        return empty_prefs()
    if not isinstance(data, dict):
        return empty_prefs()
    agents = data.get('agents')
    names = data.get('names')
    return {
        'agents': [a for a in agents if isinstance(a, str) and a] if isinstance(agents, list) else [],
        'names': {k: v for k, v in names.items() if isinstance(k, str) and isinstance(v, str) and v.strip()}
        if isinstance(names, dict) else {},
    }


def save_prefs(prefs, path=None):
    """Write preferences atomically next to the OpenClaw state."""
    path = path or config.WATCHER_PREFS_PATH
    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    tmp = f'{path}.tmp'
    with open(tmp, 'w', encoding='utf-8') as f:
        json.dump(prefs, f, ensure_ascii=False, indent=2)
    os.replace(tmp, path)


def resolve_view(agents_arg, name_pairs, prefs, reset=False):
    """Combine command-line choices with saved ones.
    Returns ``(wanted, names, changed)``; flags win over saved values and
    ``changed`` tells whether the result differs from what was saved.
    """
    saved = empty_prefs() if reset else prefs
    wanted = [x.strip() for x in (agents_arg or '').split(',') if x.strip()] or list(saved['agents'])
    names = dict(saved['names'])
    names.update(parse_names(name_pairs))
    changed = wanted != prefs['agents'] or names != prefs['names']
    return wanted, names, changed


def build_parser():
    parser = argparse.ArgumentParser(description='Watch OpenClaw agents live in the terminal.')
    parser.add_argument('--base-url', default=config.BASE_URL, help='workbench backend URL')
    parser.add_argument('--local', action='store_true', help='read transcripts directly instead of via the backend')
    parser.add_argument('--agents', default='', help='comma-separated agent ids to show')
    parser.add_argument('--name', action='append', default=[], metavar='ID=NAME', help='custom display name')
    parser.add_argument('--prefs', default=config.WATCHER_PREFS_PATH, help='where panel selection and names are saved')
    parser.add_argument('--reset', action='store_true', help='forget the saved selection and names')
    parser.add_argument('--no-save', action='store_true', help='do not remember this run\'s selection and names')
    sub = parser.add_subparsers(dest='command')
    send = sub.add_parser('send', help='send a message to one agent')
    send.add_argument('agent')
    send.add_argument('text', nargs='?', default='')
    send.add_argument('--preset', choices=sorted(PRESET_PROMPTS))
    cmd = sub.add_parser('command', help='send a slash command (e.g. "/thinking high")')
    cmd.add_argument('agent')
    cmd.add_argument('text')
    return parser


def run_send(coordinator, args):
    try:
        coordinator.load_agents()
    except WorkbenchError as e:
        print(f'[SEND] Could not load agents: {e}', file=sys.stderr)
        return 1
    if args.command == 'command':
        result = coordinator.send_command(args.agent, args.text)
    elif args.preset:
        result = coordinator.send_preset(args.agent, args.preset)
    else:
        result = coordinator.send_message(args.agent, args.text)
    if not result.get('ok'):
        print(f'[SEND] Failed: {result.get("error")}', file=sys.stderr)
        return 1
    return 0


def run_watch(coordinator, args, console):  # pragma: no cover
    prefs = load_prefs(args.prefs)
    wanted, names, changed = resolve_view(args.agents, args.name, prefs, reset=args.reset)
    if changed and not args.no_save:
        try:
            save_prefs({'agents': wanted, 'names': names}, args.prefs)
        except OSError as e:
            print(f'[WATCH] Could not save preferences to {args.prefs}: {e}', file=sys.stderr)
    coordinator.start()

    def make_display():
        shown = select_agents(coordinator.agents, wanted)
        states = {a['id']: coordinator.snapshot(a['id']) for a in shown}
        return render_dashboard(shown, coordinator.sessions, states, coordinator.system, coordinator.online, names)

    try:
        with Live(make_display(), console=console, refresh_per_second=2) as live:
            while True:
                time.sleep(config.TRANSCRIPT_POLL_SEC)
                live.update(make_display())
    except KeyboardInterrupt:
        console.print('\n[dim]Watcher stopped.[/]')
    finally:
        coordinator.stop()
    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    client = DirectClient() if args.local else WorkbenchClient(args.base_url)
    coordinator = PollCoordinator(client)
    if args.command in {'send', 'command'}:
        return run_send(coordinator, args)
    return run_watch(coordinator, args, Console())


if __name__ == '__main__':
    sys.exit(main())
