"""Setup lifecycle: one-time model initialization and the inference gate.

The setup function runs exactly once, before the server accepts traffic.
Its return value (the model handle) is bundled with the frozen registry
into a Runtime and passed explicitly to every dispatch.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping

from modelserver.errors import SetupError
from modelserver.registry import CommandRegistry

log = logging.getLogger(__name__)

SetupFn = Callable[[Mapping[str, Any]], Any]


def run_setup(setup: SetupFn, options: Mapping[str, Any] | None = None) -> Any:
    """Run the setup function and return the model handle.

    Any failure is wrapped in SetupError. It is not retried.
    """
    options = dict(options or {})
    log.info("Running model setup (options=%s)", options)
    start = time.monotonic()
    try:
        handle = setup(options)
    except Exception as exc:
        log.error("Model setup failed: %s", exc, exc_info=True)
        raise SetupError(f"Model setup failed: {exc}") from exc
    log.info("Model setup finished in %.2fs", time.monotonic() - start)
    return handle


class InferenceGate:
    """Single-slot gate around handler calls.

    With serialize=True only one handler runs at a time; other requests
    wait in their worker threads. With serialize=False the gate is a no-op,
    for inference engines that are safe to call concurrently.
    """

    def __init__(self, serialize: bool = True) -> None:
        self.serialize = serialize
        self._lock = threading.Lock() if serialize else None

    @contextlib.contextmanager
    def hold(self) -> Iterator[None]:
        if self._lock is None:
            yield
            return
        with self._lock:
            yield


@dataclass(frozen=True)
class Runtime:
    """Everything a dispatch needs. Read-only after startup."""

    registry: CommandRegistry
    handle: Any
    gate: InferenceGate = field(default_factory=InferenceGate)
    reject_unknown_fields: bool = False

    def model_info(self) -> dict:
        info = getattr(self.handle, "model_info", None)
        if callable(info):
            return info()
        return {}

    def shutdown(self) -> None:
        """Release the handle if it knows how."""
        for name in ("shutdown", "close"):
            release = getattr(self.handle, name, None)
            if callable(release):
                release()
                return
