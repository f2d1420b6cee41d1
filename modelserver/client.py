"""HTTP client for the command server.

Error responses are mapped back to the server's error classes by their
`kind` tag, so callers catch InvalidInputError, UnknownCommandError, etc.
exactly as the server raised them.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from modelserver.errors import ERRORS_BY_KIND, CommandServerError

log = logging.getLogger(__name__)

DEFAULT_URL = "http://localhost:8000"
DEFAULT_TIMEOUT = 60.0


class CommandClient:
    """Sync HTTP client for a model command server."""

    def __init__(self, base_url: str = DEFAULT_URL, timeout: float = DEFAULT_TIMEOUT) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(timeout=timeout)

    def invoke(self, command: str, **inputs: Any) -> dict:
        """POST /<command> with the given wire values. Returns the decoded JSON body."""
        resp = self._client.post(f"{self._base_url}/{command}", json=inputs)
        return self._handle(resp)

    def health(self) -> dict:
        resp = self._client.get(f"{self._base_url}/health")
        return self._handle(resp)

    def commands(self) -> list[dict]:
        """GET /commands: name, description, inputs and outputs per command."""
        resp = self._client.get(f"{self._base_url}/commands")
        return self._handle(resp)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> CommandClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @staticmethod
    def _handle(resp: httpx.Response) -> Any:
        if resp.is_success:
            return resp.json()

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        message = str(data.get("error") or resp.text or f"HTTP {resp.status_code}")
        kind = data.get("kind")
        log.debug("Command server returned %d (%s): %s", resp.status_code, kind, message)

        error_cls = ERRORS_BY_KIND.get(kind)
        if error_cls is None:
            # Unrouted paths and non-JSON failures: fall back to the status code.
            resp.raise_for_status()
            error_cls = CommandServerError
        raise error_cls(message)
