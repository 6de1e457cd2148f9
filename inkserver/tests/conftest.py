# inkserver/tests/conftest.py
import asyncio
import io
import os

# --- Set env before anything imports the app code ---
os.environ["RECOGNITION_PROVIDERS"] = "trocr_local,mathpix"
os.environ["RECOGNITION_TIMEOUT_S"] = "5"
os.environ.pop("MATHPIX_APP_ID", None)   # ensure the remote path isn't live
os.environ.pop("MATHPIX_API_KEY", None)
os.environ.pop("LOCAL_FALLBACK_URL", None)

import pytest
from PIL import Image

from inkserver.models.schemas import RecognitionCapabilities, RecognitionResult


@pytest.fixture(autouse=True)
def test_env(monkeypatch):
    # keep these so any later code still sees the offline defaults
    monkeypatch.setenv("RECOGNITION_PROVIDERS", "trocr_local,mathpix")
    monkeypatch.setenv("RECOGNITION_TIMEOUT_S", "5")
    monkeypatch.delenv("MATHPIX_APP_ID", raising=False)
    monkeypatch.delenv("MATHPIX_API_KEY", raising=False)
    monkeypatch.delenv("LOCAL_FALLBACK_URL", raising=False)


ALL_CAPS = RecognitionCapabilities(
    supports_math_recognition=True,
    supports_text_recognition=True,
)


class FakeProvider:
    """Scriptable provider; counts every probe and call."""

    requires_credentials = False

    def __init__(
        self,
        id,
        *,
        available=True,
        result=None,
        error=None,
        raises=None,
        delay=0.0,
        capabilities=ALL_CAPS,
        name=None,
    ):
        self.id = id
        self.name = name or f"Fake {id}"
        self.available = available
        self.result = result
        self.error = error
        self.raises = raises
        self.delay = delay
        self.capabilities = capabilities
        self.probes = 0
        self.calls = {"math": 0, "text": 0}
        self.payloads = []
        self.cancelled = False

    async def is_available(self):
        self.probes += 1
        if isinstance(self.available, BaseException):
            raise self.available
        return self.available

    def set_credentials(self, credentials):
        return None

    def get_capabilities(self):
        return self.capabilities

    async def recognize_math(self, payload):
        return await self._run("math", payload)

    async def recognize_text(self, payload):
        return await self._run("text", payload)

    async def _run(self, kind, payload):
        self.calls[kind] += 1
        self.payloads.append(payload)
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if self.raises is not None:
            raise self.raises
        if self.error is not None:
            return RecognitionResult.failure(self.error)
        if self.result is not None:
            return self.result
        if kind == "math":
            return RecognitionResult(success=True, latex=f"{self.id}-latex", confidence=0.9)
        return RecognitionResult(success=True, text=f"{self.id}-text", confidence=0.9)

    @property
    def total_calls(self):
        return self.calls["math"] + self.calls["text"]


@pytest.fixture()
def fake_provider():
    return FakeProvider


@pytest.fixture()
def png_bytes():
    # tiny 2x1 white image
    img = Image.new("RGB", (2, 1), (255, 255, 255))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture()
def jpeg_bytes():
    img = Image.new("RGB", (2, 1), (255, 255, 255))
    buf = io.BytesIO()
    img.save(buf, format="JPEG")
    return buf.getvalue()
