"""SqueezeNet image classifier served as the `classify` command.

Defines ImageClassifier (abstract) with two implementations:
  TorchClassifier  - SqueezeNet 1.1 via torchvision (production)
  MockClassifier   - deterministic responses for testing

The network itself is a black box: the server only needs classify()
and model_info(). Pick the backend with MODEL_BACKEND.

Usage:
    uvicorn modelserver.squeezenet:app --host 0.0.0.0 --port 8000
    # or:
    python -m modelserver
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping

from PIL import Image

from modelserver.coercion import FieldType
from modelserver.registry import CommandRegistry
from modelserver.server import create_app

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Prediction:
    """Top-1 ImageNet class."""
    label: str
    confidence: float


# ---------------------------------------------------------------------------
# Abstract classifier
# ---------------------------------------------------------------------------

class ImageClassifier(ABC):
    """Interface for the pretrained model: one image in, one label out."""

    @abstractmethod
    def classify(self, image: Image.Image) -> Prediction:
        """Return the most likely class for the image."""

    @abstractmethod
    def model_info(self) -> dict:
        """Return metadata about the loaded model (for /health endpoint)."""


# ---------------------------------------------------------------------------
# Mock classifier (for testing without torch)
# ---------------------------------------------------------------------------

class MockClassifier(ImageClassifier):
    """Always answers "tabby, tabby cat". For testing the server without weights."""

    LABEL = "tabby, tabby cat"

    def __init__(self) -> None:
        self._call_count = 0

    def classify(self, image: Image.Image) -> Prediction:
        self._call_count += 1
        return Prediction(label=self.LABEL, confidence=0.87)

    def model_info(self) -> dict:
        return {
            "backend": "mock",
            "model": "none",
            "calls": self._call_count,
        }


# ---------------------------------------------------------------------------
# torchvision classifier (production)
# ---------------------------------------------------------------------------

class TorchClassifier(ImageClassifier):
    """SqueezeNet 1.1 via torchvision.

    Requires: pip install torch torchvision
    Loads ImageNet weights from torchvision, or a state dict from
    `checkpoint` when one is given.
    """

    def __init__(self, checkpoint: str | None = None, device: str = "cpu") -> None:
        self._checkpoint = checkpoint
        self._device = device
        self._model = None
        self._transform = None
        self._labels: list[str] = []
        self._load_model()

    def _load_model(self) -> None:
        try:
            import torch  # type: ignore[import-untyped]
            from torchvision import models  # type: ignore[import-untyped]
        except ImportError as exc:
            raise ImportError(
                "torch and torchvision are required for the torch backend. "
                "Install with: pip install torch torchvision"
            ) from exc

        weights = models.SqueezeNet1_1_Weights.IMAGENET1K_V1
        if self._checkpoint:
            log.info("Loading SqueezeNet weights from %s", self._checkpoint)
            model = models.squeezenet1_1(weights=None)
            state_dict = torch.load(self._checkpoint, map_location=self._device)
            model.load_state_dict(state_dict)
        else:
            log.info("Loading pretrained SqueezeNet 1.1 weights")
            model = models.squeezenet1_1(weights=weights)

        self._model = model.to(self._device).eval()
        self._transform = weights.transforms()
        self._labels = list(weights.meta["categories"])
        log.info("Model loaded successfully (%d classes)", len(self._labels))

    def classify(self, image: Image.Image) -> Prediction:
        if self._model is None or self._transform is None:
            raise RuntimeError("Model not loaded")

        import torch  # type: ignore[import-untyped]

        if image.mode != "RGB":
            image = image.convert("RGB")
        batch = self._transform(image).unsqueeze(0).to(self._device)
        with torch.no_grad():
            logits = self._model(batch)
        probs = torch.softmax(logits[0], dim=0)
        confidence, index = probs.max(dim=0)
        return Prediction(label=self._labels[int(index)], confidence=float(confidence))

    def model_info(self) -> dict:
        return {
            "backend": "torch",
            "model": "squeezenet1_1",
            "checkpoint": self._checkpoint or "pretrained",
            "device": self._device,
        }


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def create_classifier(options: Mapping[str, Any]) -> ImageClassifier:
    """Create the classifier named by options["backend"]."""
    backend_name = str(options.get("backend") or "mock").lower()

    if backend_name == "mock":
        log.info("Using mock classifier (no weights required)")
        return MockClassifier()

    if backend_name == "torch":
        return TorchClassifier(
            checkpoint=options.get("checkpoint"),
            device=options.get("device") or "cpu",
        )

    raise ValueError(
        f"Unknown model backend: {backend_name!r}. "
        f"Valid options: mock, torch"
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

registry = CommandRegistry()


def setup(options: Mapping[str, Any]) -> ImageClassifier:
    """Load the model once. The result is the handle passed to every command."""
    return create_classifier(options)


@registry.command(
    "classify",
    inputs={"image": FieldType.IMAGE},
    outputs={"label": FieldType.TEXT, "confidence": FieldType.NUMBER},
)
def classify(classifier: ImageClassifier, image: Image.Image) -> dict:
    """Classify an image into one of the 1000 ImageNet categories."""
    prediction = classifier.classify(image)
    return {"label": prediction.label, "confidence": prediction.confidence}


app = create_app(registry, setup, title="SqueezeNet Classifier")
