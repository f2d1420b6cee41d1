"""Command server configuration.

Loads from environment variables. Defaults serve the SqueezeNet classifier
with the mock backend on all interfaces, port 8000.

Env file: ~/.modelserver/server.env (override with MODELSERVER_ENV_FILE)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_server_env = Path(
    os.environ.get("MODELSERVER_ENV_FILE", str(Path.home() / ".modelserver" / "server.env"))
)
if _server_env.exists():
    load_dotenv(_server_env)


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class Config:
    """Immutable command server configuration."""

    # Server
    host: str
    port: int
    log_level: str

    # Model setup options
    model_backend: str  # "mock" or "torch"
    checkpoint: str  # path to weights, empty = pretrained default
    device: str

    # Dispatch
    serialize_inference: bool  # one handler call at a time
    reject_unknown_fields: bool

    @classmethod
    def load(cls) -> Config:
        """Load configuration from environment variables."""
        return cls(
            host=os.environ.get("MODELSERVER_HOST", "0.0.0.0"),
            port=int(os.environ.get("MODELSERVER_PORT", "8000")),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            model_backend=os.environ.get("MODEL_BACKEND", "mock"),
            checkpoint=os.environ.get("MODEL_CHECKPOINT", ""),
            device=os.environ.get("MODEL_DEVICE", "cpu"),
            serialize_inference=_env_bool("SERIALIZE_INFERENCE", "true"),
            reject_unknown_fields=_env_bool("REJECT_UNKNOWN_FIELDS", "false"),
        )

    def setup_options(self) -> dict:
        """Options handed to the model setup function."""
        return {
            "backend": self.model_backend,
            "checkpoint": self.checkpoint or None,
            "device": self.device,
        }
