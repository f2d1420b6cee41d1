"""Tests for model setup, the inference gate and the runtime bundle.

Run: python -m pytest modelserver/tests/test_lifecycle.py -v
"""

from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest

from modelserver.errors import SetupError
from modelserver.lifecycle import InferenceGate, Runtime, run_setup
from modelserver.registry import CommandRegistry


class TestRunSetup:
    def test_returns_handle(self) -> None:
        handle = object()
        assert run_setup(lambda options: handle) is handle

    def test_passes_options(self) -> None:
        seen = {}

        def setup(options):
            seen.update(options)
            return "handle"

        run_setup(setup, {"checkpoint": "/weights/squeezenet.pth"})
        assert seen == {"checkpoint": "/weights/squeezenet.pth"}

    def test_none_options_become_empty(self) -> None:
        setup = MagicMock(return_value="handle")
        run_setup(setup, None)
        setup.assert_called_once_with({})

    def test_failure_wrapped_in_setup_error(self) -> None:
        def setup(options):
            raise FileNotFoundError("squeezenet.pth")

        with pytest.raises(SetupError, match="squeezenet.pth") as excinfo:
            run_setup(setup)
        assert isinstance(excinfo.value.__cause__, FileNotFoundError)

    def test_not_retried(self) -> None:
        setup = MagicMock(side_effect=RuntimeError("out of memory"))
        with pytest.raises(SetupError):
            run_setup(setup)
        assert setup.call_count == 1


class TestInferenceGate:
    def test_serialized_gate_admits_one_at_a_time(self) -> None:
        gate = InferenceGate(serialize=True)
        active = 0
        peak = 0
        counter_lock = threading.Lock()

        def work() -> None:
            nonlocal active, peak
            with gate.hold():
                with counter_lock:
                    active += 1
                    peak = max(peak, active)
                time.sleep(0.02)
                with counter_lock:
                    active -= 1

        threads = [threading.Thread(target=work) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert peak == 1

    def test_open_gate_allows_overlap(self) -> None:
        gate = InferenceGate(serialize=False)
        # Both threads must be inside the gate at once to pass the barrier.
        barrier = threading.Barrier(2, timeout=2)
        errors: list[Exception] = []

        def work() -> None:
            with gate.hold():
                try:
                    barrier.wait()
                except threading.BrokenBarrierError as exc:
                    errors.append(exc)

        threads = [threading.Thread(target=work) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []

    def test_lock_released_after_exception(self) -> None:
        gate = InferenceGate(serialize=True)
        with pytest.raises(ValueError):
            with gate.hold():
                raise ValueError("inference blew up")
        with gate.hold():
            pass


class TestRuntime:
    def test_model_info_from_handle(self) -> None:
        handle = MagicMock()
        handle.model_info.return_value = {"backend": "mock"}
        runtime = Runtime(registry=CommandRegistry(), handle=handle)
        assert runtime.model_info() == {"backend": "mock"}

    def test_model_info_missing(self) -> None:
        runtime = Runtime(registry=CommandRegistry(), handle=object())
        assert runtime.model_info() == {}

    def test_shutdown_prefers_shutdown(self) -> None:
        handle = MagicMock()
        Runtime(registry=CommandRegistry(), handle=handle).shutdown()
        handle.shutdown.assert_called_once_with()
        handle.close.assert_not_called()

    def test_shutdown_falls_back_to_close(self) -> None:
        class Handle:
            closed = False

            def close(self) -> None:
                self.closed = True

        handle = Handle()
        Runtime(registry=CommandRegistry(), handle=handle).shutdown()
        assert handle.closed

    def test_shutdown_without_release_method(self) -> None:
        Runtime(registry=CommandRegistry(), handle=42).shutdown()

    def test_frozen(self) -> None:
        runtime = Runtime(registry=CommandRegistry(), handle=None)
        with pytest.raises(AttributeError):
            runtime.handle = "other"  # type: ignore[misc]
