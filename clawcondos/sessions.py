"""
Session spawner abstraction.

The gateway owns agent sessions; clawcondos only asks it to start a
session for a task and, when killing work, to abort one.
"""

import json
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from websockets.exceptions import WebSocketException
from websockets.sync.client import connect

from .errors import SessionError


class SessionSpawner(ABC):
    """Abstract base class for session spawners."""

    @abstractmethod
    def start_session(self, session_key: str, task_context: dict):
        """
        Ask the gateway to start a session working on a task.

        Args:
            session_key: Key the session will run under
            task_context: Payload from the context builder, forwarded verbatim

        Raises:
            SessionError if the gateway refuses or can't be reached
        """
        pass

    @abstractmethod
    def abort_session(self, session_key: str):
        """Ask the gateway to stop a session. Raises SessionError on failure."""
        pass


class GatewaySessionSpawner(SessionSpawner):
    """Talks to the gateway over its websocket RPC endpoint, one connection per call."""

    def __init__(self, url: str, timeout: float = 10.0, token: Optional[str] = None):
        self.url = url
        self.timeout = timeout
        self.token = token

    def _call(self, method: str, params: dict) -> dict:
        request_id = uuid.uuid4().hex
        frame = {"type": "req", "id": request_id, "method": method, "params": params}
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None
        try:
            with connect(self.url, open_timeout=self.timeout, additional_headers=headers) as ws:
                ws.send(json.dumps(frame))
                while True:
                    reply = json.loads(ws.recv(timeout=self.timeout))
                    if reply.get("id") != request_id:
                        continue  # Gateway events interleave with responses
                    if not reply.get("ok", False):
                        error = reply.get("error") or "unknown error"
                        if isinstance(error, dict):
                            error = error.get("message", str(error))
                        raise SessionError(f"{method} rejected: {error}")
                    return reply.get("payload") or {}
        except (OSError, TimeoutError, WebSocketException, json.JSONDecodeError) as e:
            raise SessionError(f"{method} failed: {e}") from e

    def start_session(self, session_key: str, task_context: dict):
        self._call("chat.send", {
            "sessionKey": session_key,
            "message": task_context.get("prompt", ""),
            "context": task_context,
            "idempotencyKey": session_key,
        })

    def abort_session(self, session_key: str):
        self._call("chat.abort", {"sessionKey": session_key})


class MockSessionSpawner(SessionSpawner):
    """Mock spawner for testing and dry runs. Records every call."""

    def __init__(self, fail_keys: Optional[set[str]] = None, fail_all: bool = False):
        self.fail_keys = set(fail_keys or ())
        self.fail_all = fail_all
        self.started: list[tuple[str, dict]] = []
        self.aborted: list[str] = []
        self.abort_failures: set[str] = set()

    @property
    def started_keys(self) -> list[str]:
        return [key for key, _ in self.started]

    def start_session(self, session_key: str, task_context: dict):
        self.started.append((session_key, task_context))
        if self.fail_all or session_key in self.fail_keys:
            raise SessionError(f"mock refused to start {session_key}")

    def abort_session(self, session_key: str):
        if session_key in self.abort_failures:
            raise SessionError(f"mock refused to abort {session_key}")
        self.aborted.append(session_key)


def get_spawner(name: str = "gateway", url: str = None, timeout: float = 10.0, token: str = None) -> SessionSpawner:
    """
    Get a session spawner by name.

    Args:
        name: gateway or mock
    """
    if name == "gateway":
        if not url:
            raise ValueError("gateway spawner needs a url")
        return GatewaySessionSpawner(url, timeout=timeout, token=token)
    elif name == "mock":
        return MockSessionSpawner()
    else:
        raise ValueError(f"Unknown spawner: {name}")
