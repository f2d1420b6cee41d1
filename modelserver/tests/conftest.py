"""Shared pytest configuration for command server tests."""

from __future__ import annotations

import base64
import io
import sys
from pathlib import Path

import pytest
from PIL import Image

# Add project root to sys.path so `from modelserver.xxx import ...` works.
_PROJECT_ROOT = str(Path(__file__).resolve().parent.parent.parent)
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from modelserver.config import Config  # noqa: E402


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def sample_image_b64() -> str:
    """A minimal valid PNG image encoded as base64 (64x48 orange)."""
    img = Image.new("RGB", (64, 48), color=(230, 120, 30))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


@pytest.fixture()
def jpeg_image_b64() -> str:
    """A JPEG photo-sized image encoded as base64."""
    img = Image.new("RGB", (320, 240), color=(90, 90, 90))
    buf = io.BytesIO()
    img.save(buf, format="JPEG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


@pytest.fixture()
def test_config() -> Config:
    """Config with fixed values, independent of the environment."""
    return Config(
        host="127.0.0.1",
        port=8000,
        log_level="INFO",
        model_backend="mock",
        checkpoint="",
        device="cpu",
        serialize_inference=True,
        reject_unknown_fields=False,
    )
