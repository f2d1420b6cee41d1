"""Command server: FastAPI application that dispatches POST /<command>.

Endpoints:
  POST /{command}  - decode inputs, run the handler, encode outputs
  GET  /commands   - registered commands with their input/output schemas
  GET  /health     - liveness check with model info

The model is set up once in the lifespan, before uvicorn accepts
connections. Each dispatch runs in the threadpool so long inference calls
never block the event loop; the inference gate decides whether handler
calls may overlap.

Usage:
    app = create_app(registry, setup)
    uvicorn.run(app, host="0.0.0.0", port=8000)
"""

from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Mapping

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from modelserver.coercion import decode, encode
from modelserver.config import Config
from modelserver.errors import (
    CommandServerError,
    HandlerRuntimeError,
    InvalidInputError,
    SerializationError,
)
from modelserver.lifecycle import InferenceGate, Runtime, SetupFn, run_setup
from modelserver.registry import Command, CommandRegistry

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Dispatch (runs in a worker thread)
# ---------------------------------------------------------------------------

def decode_inputs(command: Command, body: Mapping[str, Any], reject_unknown: bool = False) -> dict:
    """Decode every declared input. Raises InvalidInputError on the first bad field."""
    if reject_unknown:
        unknown = sorted(set(body) - set(command.inputs))
        if unknown:
            raise InvalidInputError(f"Unknown field(s) for {command.name!r}: {', '.join(unknown)}")

    inputs: dict[str, Any] = {}
    for key, ftype in command.inputs.items():
        if key not in body:
            raise InvalidInputError(f"Missing required field {key!r}")
        try:
            inputs[key] = decode(ftype, body[key])
        except InvalidInputError as exc:
            raise InvalidInputError(f"Field {key!r}: {exc.message}") from exc
    return inputs


def encode_outputs(command: Command, result: Any) -> dict:
    """Check the handler result against the output schema and encode it."""
    if not isinstance(result, Mapping):
        raise SerializationError(
            f"Command {command.name!r} returned {type(result).__name__}, expected a mapping"
        )
    missing = sorted(set(command.outputs) - set(result))
    extra = sorted(set(result) - set(command.outputs))
    if missing or extra:
        raise SerializationError(
            f"Command {command.name!r} output keys do not match schema "
            f"(missing={missing}, unexpected={extra})"
        )

    encoded: dict[str, Any] = {}
    for key, ftype in command.outputs.items():
        try:
            encoded[key] = encode(ftype, result[key])
        except SerializationError as exc:
            raise SerializationError(f"Output {key!r}: {exc.message}") from exc
    return encoded


def dispatch(runtime: Runtime, command: Command, body: Mapping[str, Any]) -> dict:
    """Decode -> invoke -> encode for one request."""
    inputs = decode_inputs(command, body, runtime.reject_unknown_fields)
    log.debug("%s: decoded %d input(s)", command.name, len(inputs))

    try:
        with runtime.gate.hold():
            result = command.handler(runtime.handle, **inputs)
    except CommandServerError:
        raise
    except Exception as exc:
        log.error("Handler for %s failed: %s", command.name, exc, exc_info=True)
        raise HandlerRuntimeError(f"Command {command.name!r} failed: {exc}") from exc

    try:
        return encode_outputs(command, result)
    except SerializationError as exc:
        log.error("Model bug in %s: %s", command.name, exc.message)
        raise
    except Exception as exc:
        log.error("Encoding output of %s failed: %s", command.name, exc, exc_info=True)
        raise CommandServerError(f"Command {command.name!r} output could not be encoded: {exc}") from exc


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str
    commands: list[str]
    model: dict


class CommandInfo(BaseModel):
    name: str
    description: str
    inputs: dict[str, str]
    outputs: dict[str, str]


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def _error_response(exc: CommandServerError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _read_body(request: Request) -> dict:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except ValueError as exc:
        # Covers JSONDecodeError, UnicodeDecodeError and the int digit limit.
        raise InvalidInputError(f"Request body is not valid JSON: {exc}") from exc
    if not isinstance(body, dict):
        raise InvalidInputError(f"Request body must be a JSON object, got {type(body).__name__}")
    return body


def create_app(
    registry: CommandRegistry,
    setup: SetupFn,
    config: Config | None = None,
    title: str = "Model Command Server",
) -> FastAPI:
    """Build a FastAPI app serving every command in `registry`.

    `setup` receives config.setup_options() and returns the model handle.
    A failing setup raises SetupError out of the lifespan, so uvicorn never
    starts accepting connections.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = config or Config.load()
        logging.basicConfig(
            level=getattr(logging, cfg.log_level, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

        handle = run_setup(setup, cfg.setup_options())
        registry.freeze()
        runtime = Runtime(
            registry=registry,
            handle=handle,
            gate=InferenceGate(cfg.serialize_inference),
            reject_unknown_fields=cfg.reject_unknown_fields,
        )
        app.state.runtime = runtime
        log.info(
            "Serving %d command(s) [%s] on http://%s:%d",
            len(registry), ", ".join(registry.names()), cfg.host, cfg.port,
        )

        yield

        log.info("Shutting down command server")
        runtime.shutdown()
        app.state.runtime = None

    app = FastAPI(title=title, version="1.0.0", lifespan=lifespan)
    app.state.runtime = None

    def get_runtime(request: Request) -> Runtime:
        runtime = request.app.state.runtime
        assert runtime is not None, "Server not initialized"
        return runtime

    @app.exception_handler(CommandServerError)
    async def command_error_handler(request: Request, exc: CommandServerError) -> JSONResponse:
        if exc.status_code < 500:
            log.warning("%s %s -> %d %s: %s",
                        request.method, request.url.path, exc.status_code, exc.kind, exc.message)
        return _error_response(exc)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        log.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        return _error_response(CommandServerError(f"Internal server error: {exc}"))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        kind = {404: "not_found", 405: "method_not_allowed"}.get(exc.status_code, "http_error")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail), "kind": kind},
            headers=getattr(exc, "headers", None),
        )

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        """Liveness check. Returns model info."""
        runtime = get_runtime(request)
        return HealthResponse(
            status="ok",
            commands=runtime.registry.names(),
            model=runtime.model_info(),
        )

    @app.get("/commands", response_model=list[CommandInfo])
    async def list_commands(request: Request) -> list[CommandInfo]:
        runtime = get_runtime(request)
        return [CommandInfo(**command.describe()) for command in runtime.registry]

    @app.post("/{command_name}")
    async def invoke(command_name: str, request: Request) -> JSONResponse:
        """Run one command: decode inputs, call the handler, encode outputs."""
        runtime = get_runtime(request)
        command = runtime.registry.resolve(command_name)
        body = await _read_body(request)

        start = time.monotonic()
        result = await run_in_threadpool(dispatch, runtime, command, body)
        elapsed_ms = int((time.monotonic() - start) * 1000)
        log.info("%s completed in %dms", command.name, elapsed_ms)

        return JSONResponse(status_code=200, content=result)

    return app
