"""MCP server for the OpenClaw multi-agent workbench.

Exposes the workbench REST endpoints as MCP tools so AI clients can read
agent transcripts, token usage and host status through a standard MCP
interface.
"""

from __future__ import annotations

import os
from typing import Any, Callable

from mcp.server.fastmcp import FastMCP

from client import WorkbenchClient, WorkbenchError

BASE_URL = os.environ.get("WORKBENCH_MCP_BASE_URL", os.environ.get("WORKBENCH_BASE_URL", "http://127.0.0.1:3001")).rstrip("/")
REQUEST_TIMEOUT_SEC = float(os.environ.get("WORKBENCH_MCP_TIMEOUT_SEC", "10"))

mcp = FastMCP("openclaw-workbench")
client = WorkbenchClient(BASE_URL, REQUEST_TIMEOUT_SEC)


def _call(fetch: Callable[[], Any]) -> dict[str, Any]:
    try:
        return {"ok": True, "base_url": BASE_URL, "data": fetch()}
    except WorkbenchError as exc:
        envelope = {
            "ok": False,
            "base_url": BASE_URL,
            "error": str(exc),
            "details": exc.details,
        }
        if exc.status_code is not None:
            envelope["status_code"] = exc.status_code
        return envelope


@mcp.tool()
def workbench_ready() -> dict[str, Any]:
    """Return backend readiness from /ready."""
    return _call(client.ready)


@mcp.tool()
def workbench_agents(refresh: bool = False) -> dict[str, Any]:
    """Return the agent registry from /api/config, optionally rediscovering agents."""
    return _call(lambda: client.config(refresh=refresh).get("agents") or [])


@mcp.tool()
def workbench_sessions() -> dict[str, Any]:
    """Return per-agent model, token and context counters from /api/sessions."""
    return _call(client.sessions)


@mcp.tool()
def workbench_system() -> dict[str, Any]:
    """Return CPU/RAM/GPU usage and gateway liveness from /api/system."""
    return _call(client.system)


@mcp.tool()
def agent_transcript(agent_id: str, limit: int = 50) -> dict[str, Any]:
    """Return the most recent chat turns of one agent (limit 1-200)."""
    return _call(lambda: client.transcript_recent(agent_id, limit))


@mcp.tool()
def agent_transcript_poll(agent_id: str, offset: int = 0) -> dict[str, Any]:
    """Return turns appended after a byte offset, plus the new offset to poll from."""
    return _call(lambda: client.transcript_poll(agent_id, offset))


if __name__ == "__main__":
    mcp.run()
