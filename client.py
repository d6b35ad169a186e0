"""HTTP client for the workbench backend API."""

from __future__ import annotations

import json
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

import config
from config import DEFAULT_RECENT_LIMIT
from agents import get_agents
from gateway import GatewayError, forward_chat
from session_metrics import read_all_sessions
from system_stats import read_system_stats
from transcript import clamp_limit, read_transcript_increment, read_transcript_recent


class WorkbenchError(Exception):
    """Raised when a backend call fails; carries the HTTP status when there was one."""

    def __init__(self, message: str, status_code: int | None = None, details: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


class WorkbenchClient:
    """Small JSON client; every call carries its own timeout."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or config.BASE_URL).rstrip("/")
        self.timeout = timeout or config.HTTP_TIMEOUT_SEC

    def _build_url(self, path: str, params: dict[str, Any] | None = None) -> str:
        query = urlencode(params or {}, doseq=True)
        return f"{self.base_url}{path}{'?' + query if query else ''}"

    def _request(self, method: str, path: str, params: dict[str, Any] | None = None,
                 body: dict[str, Any] | None = None) -> dict[str, Any]:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        headers = {"Content-Type": "application/json"} if data is not None else {}
        request = Request(url=self._build_url(path, params), data=data, headers=headers, method=method)
        try:
            with urlopen(request, timeout=self.timeout) as response:
                charset = response.headers.get_content_charset() or "utf-8"
                text = response.read().decode(charset)
        except HTTPError as exc:
            try:
                details = exc.read().decode("utf-8", errors="replace")
            except Exception:
                details = ""
            raise WorkbenchError(f"HTTP error {exc.code}", status_code=int(exc.code), details=details) from exc
        except URLError as exc:
            raise WorkbenchError("Connection error", details=str(exc.reason)) from exc
        except OSError as exc:
            raise WorkbenchError("Connection error", details=str(exc)) from exc
        if not text:
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise WorkbenchError("Invalid JSON response", details=str(exc)) from exc

    def ready(self) -> dict[str, Any]:
        return self._request("GET", "/ready")

    def config(self, refresh: bool = False) -> dict[str, Any]:
        return self._request("GET", "/api/config", {"refresh": 1} if refresh else None)

    def sessions(self) -> dict[str, Any]:
        return self._request("GET", "/api/sessions").get("sessions") or {}

    def system(self) -> dict[str, Any]:
        return self._request("GET", "/api/system")

    def transcript_recent(self, agent_id: str, limit: int = DEFAULT_RECENT_LIMIT) -> dict[str, Any]:
        return self._request("GET", f"/api/transcript/{quote(agent_id, safe='')}", {"limit": limit})

    def transcript_poll(self, agent_id: str, offset: int = 0) -> dict[str, Any]:
        return self._request("GET", f"/api/transcript/{quote(agent_id, safe='')}/poll", {"offset": offset})

    def chat(self, agent_id: str, session_key: str | None, messages: list[dict[str, Any]],
             stream: bool = False) -> dict[str, Any]:
        body = {"agentId": agent_id, "sessionKey": session_key, "messages": messages, "stream": stream}
        return self._request("POST", "/api/chat", body=body)

    def command(self, agent_id: str, command: str) -> dict[str, Any]:
        return self._request("POST", "/api/command", body={"agentId": agent_id, "command": command})


class DirectClient:
    """In-process stand-in for ``WorkbenchClient`` that reads files directly.

    Used by the terminal watcher's ``--local`` mode when no backend is running.
    Chat and command calls go straight to the gateway.
    """

    def __init__(self, agents: list[dict[str, Any]] | None = None):
        self._agents = agents if agents is not None else get_agents()

    def _agent(self, agent_id: str) -> dict[str, Any]:
        for agent in self._agents:
            if agent["id"] == agent_id:
                return agent
        raise WorkbenchError("agent not found", status_code=404)

    def ready(self) -> dict[str, Any]:
        return {"ready": True}

    def config(self, refresh: bool = False) -> dict[str, Any]:
        if refresh:
            self._agents = get_agents(refresh=True)
        return {"gatewayHttp": config.GATEWAY_HTTP, "gatewayWs": config.GATEWAY_WS, "agents": list(self._agents)}

    def sessions(self) -> dict[str, Any]:
        return read_all_sessions(self._agents)

    def system(self) -> dict[str, Any]:
        return read_system_stats()

    def transcript_recent(self, agent_id: str, limit: int = DEFAULT_RECENT_LIMIT) -> dict[str, Any]:
        return read_transcript_recent(self._agent(agent_id)["transcriptPath"], clamp_limit(limit))

    def transcript_poll(self, agent_id: str, offset: int = 0) -> dict[str, Any]:
        return read_transcript_increment(self._agent(agent_id)["transcriptPath"], offset)

    def chat(self, agent_id: str, session_key: str | None, messages: list[dict[str, Any]],
             stream: bool = False) -> dict[str, Any]:
        try:
            status, body, _content_type = forward_chat(agent_id, session_key, messages, stream)
        except GatewayError as exc:
            raise WorkbenchError("Connection error", details=str(exc)) from exc
        if status >= 400:
            raise WorkbenchError(f"HTTP error {status}", status_code=status,
                                 details=body.decode("utf-8", errors="replace"))
        return {"status": status}

    def command(self, agent_id: str, command: str) -> dict[str, Any]:
        raise WorkbenchError("commands need the backend's gateway channel")
