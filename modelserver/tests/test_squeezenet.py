"""Tests for the SqueezeNet classifier backends and the classify command.

Run: python -m pytest modelserver/tests/test_squeezenet.py -v
"""

from __future__ import annotations

import os
import sys
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Force mock backend before the app's lifespan loads config
os.environ.setdefault("MODEL_BACKEND", "mock")

from modelserver.squeezenet import (  # noqa: E402
    MockClassifier,
    Prediction,
    TorchClassifier,
    app,
    classify,
    create_classifier,
    registry,
    setup,
)


@pytest.fixture()
def client():
    """FastAPI test client with mock backend. Context manager triggers lifespan."""
    with patch.dict(os.environ, {"MODEL_BACKEND": "mock"}):
        with TestClient(app) as c:
            yield c


# ---------------------------------------------------------------------------
# Mock classifier
# ---------------------------------------------------------------------------

class TestMockClassifier:
    def test_tabby(self) -> None:
        prediction = MockClassifier().classify(Image.new("RGB", (8, 8)))
        assert prediction == Prediction(label="tabby, tabby cat", confidence=0.87)

    def test_counts_calls(self) -> None:
        classifier = MockClassifier()
        classifier.classify(Image.new("RGB", (8, 8)))
        classifier.classify(Image.new("L", (8, 8)))
        assert classifier.model_info()["calls"] == 2

    def test_model_info(self) -> None:
        info = MockClassifier().model_info()
        assert info["backend"] == "mock"


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

class TestCreateClassifier:
    def test_mock(self) -> None:
        assert isinstance(create_classifier({"backend": "mock"}), MockClassifier)

    def test_default_is_mock(self) -> None:
        assert isinstance(create_classifier({}), MockClassifier)

    def test_case_insensitive(self) -> None:
        assert isinstance(create_classifier({"backend": "MOCK"}), MockClassifier)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown model backend"):
            create_classifier({"backend": "onnx"})

    def test_torch_missing_raises_import_error(self) -> None:
        with patch.dict(sys.modules, {"torch": None, "torchvision": None}):
            with pytest.raises(ImportError, match="torch"):
                create_classifier({"backend": "torch", "checkpoint": None, "device": "cpu"})

    def test_setup_uses_factory(self) -> None:
        assert isinstance(setup({"backend": "mock"}), MockClassifier)


class TestTorchClassifierUnloaded:
    def test_classify_before_load(self) -> None:
        classifier = TorchClassifier.__new__(TorchClassifier)
        classifier._model = None
        classifier._transform = None
        with pytest.raises(RuntimeError, match="not loaded"):
            classifier.classify(Image.new("RGB", (8, 8)))

    def test_model_info(self) -> None:
        classifier = TorchClassifier.__new__(TorchClassifier)
        classifier._checkpoint = None
        classifier._device = "cpu"
        info = classifier.model_info()
        assert info["model"] == "squeezenet1_1"
        assert info["checkpoint"] == "pretrained"


# ---------------------------------------------------------------------------
# classify command
# ---------------------------------------------------------------------------

class TestClassifyCommand:
    def test_registered_schema(self) -> None:
        command = registry.resolve("classify")
        assert command.describe()["inputs"] == {"image": "image"}
        assert command.describe()["outputs"] == {"label": "text", "confidence": "number"}

    def test_handler_direct(self) -> None:
        result = classify(MockClassifier(), Image.new("RGB", (8, 8)))
        assert result == {"label": "tabby, tabby cat", "confidence": 0.87}


class TestApp:
    def test_classify(self, client: TestClient, sample_image_b64: str) -> None:
        resp = client.post("/classify", json={"image": sample_image_b64})
        assert resp.status_code == 200
        data = resp.json()
        assert data == {"label": "tabby, tabby cat", "confidence": 0.87}

    def test_classify_jpeg(self, client: TestClient, jpeg_image_b64: str) -> None:
        resp = client.post("/classify", json={"image": jpeg_image_b64})
        assert resp.status_code == 200

    def test_classify_bad_image(self, client: TestClient) -> None:
        resp = client.post("/classify", json={"image": "not-base64"})
        assert resp.status_code == 400
        assert "error" in resp.json()

    def test_health_reports_mock(self, client: TestClient) -> None:
        data = client.get("/health").json()
        assert data["model"]["backend"] == "mock"
        assert data["commands"] == ["classify"]
