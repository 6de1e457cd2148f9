import asyncio
import concurrent.futures
import enum
import io
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import httpx
from PIL import Image

from ...models.schemas import (
    FALLBACK_API,
    FALLBACK_STUB,
    RecognitionCapabilities,
    RecognitionKind,
    RecognitionResult,
)
from ..payload import sniff_mime

logger = logging.getLogger(__name__)

HANDWRITTEN = "microsoft/trocr-base-handwritten"
MATH_HANDWRITTEN = "fhswf/TrOCR_Math_handwritten"

# TrOCR pipelines report no score; fixed priors per kind
MATH_CONFIDENCE = 0.7
TEXT_CONFIDENCE = 0.5
STUB_CONFIDENCE = 0.1
# how long a request waits on a loading engine before taking the degraded path
INIT_WAIT_S = 5.0
STUB_LATEX = r"\square"
STUB_TEXT = "[unrecognized]"

CAPABILITIES = RecognitionCapabilities(
    supports_math_recognition=True,
    supports_text_recognition=True,
    supports_diagram_recognition=False,
    supported_image_formats=("image/png", "image/jpeg"),
    max_image_size=5 * 1024 * 1024,
)


def _bytes_to_image(file_bytes: bytes) -> Image.Image:
    return Image.open(io.BytesIO(file_bytes)).convert("RGB")


def _device() -> str:
    try:
        import torch

        if torch.cuda.is_available():
            return "cuda"
    except Exception:
        pass
    return "cpu"


def normalize(text: str) -> str:
    t = (text or "").replace("\r\n", "\n")
    return t.strip()


class EngineState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class TrOCREngine:
    """Two Hugging Face image-to-text pipelines, one per recognition kind."""

    def __init__(self, text_model: str = HANDWRITTEN, math_model: str = MATH_HANDWRITTEN):
        from transformers import pipeline

        self.dev = _device()
        self.models = {"text": text_model, "math": math_model}
        self._pipes: Dict[str, Any] = {}
        loaded: Dict[str, Any] = {}
        for kind, model_id in self.models.items():
            # same model id for both kinds shares one pipeline
            if model_id not in loaded:
                logger.info("[trocr_local] loading model=%s device=%s", model_id, self.dev)
                loaded[model_id] = pipeline(
                    "image-to-text",
                    model=model_id,
                    device=0 if self.dev == "cuda" else -1,
                )
            self._pipes[kind] = loaded[model_id]

    def run(self, img: Image.Image, kind: RecognitionKind) -> Tuple[str, Dict[str, Any]]:
        t0 = time.perf_counter()
        out = self._pipes[kind](img)
        latency_ms = int((time.perf_counter() - t0) * 1000)
        text = ""
        if isinstance(out, list) and out and isinstance(out[0], dict):
            text = out[0].get("generated_text", "") or ""
        meta = {
            "latency_ms": latency_ms,
            "model": self.models[kind],
            "device": self.dev,
            "raw_len": len(text),
        }
        return text, meta


class TrOCRLocal:
    """
    Local handwriting engine.

    The engine loads lazily on a worker thread the first time anyone asks
    for it; concurrent first callers all wait on the same load. Until the
    engine is READY, recognition degrades to the remote fallback endpoint
    (when configured) and then to a low-confidence placeholder. With a
    degraded path configured the provider reports itself available right
    away, and a request waits at most `init_wait_s` on a loading engine.
    """

    id = "trocr_local"
    name = "TrOCR (local)"
    requires_credentials = False

    def __init__(
        self,
        text_model: Optional[str] = None,
        math_model: Optional[str] = None,
        fallback_url: Optional[str] = None,
        stub_fallback: bool = True,
        engine_factory: Optional[Callable[[], Any]] = None,
        fallback_timeout_s: float = 60,
        init_wait_s: float = INIT_WAIT_S,
    ):
        self.text_model = text_model or HANDWRITTEN
        self.math_model = math_model or MATH_HANDWRITTEN
        self.fallback_url = (fallback_url or "").rstrip("/") or None
        self.stub_fallback = stub_fallback
        self.fallback_timeout_s = fallback_timeout_s
        self.init_wait_s = init_wait_s
        self._engine_factory = engine_factory or (lambda: TrOCREngine(self.text_model, self.math_model))
        self._lock = threading.Lock()
        self._state = EngineState.UNINITIALIZED
        self._init_future: Optional[concurrent.futures.Future] = None
        self._init_error: Optional[str] = None
        self._engine: Any = None

    @property
    def state(self) -> EngineState:
        return self._state

    def set_credentials(self, credentials: Dict[str, str]) -> None:
        return None

    def get_capabilities(self) -> RecognitionCapabilities:
        return CAPABILITIES

    def _start_init(self) -> concurrent.futures.Future:
        with self._lock:
            if self._init_future is not None:
                return self._init_future
            fut: concurrent.futures.Future = concurrent.futures.Future()
            # running futures can't be cancelled by an abandoned waiter
            fut.set_running_or_notify_cancel()
            self._init_future = fut
            self._state = EngineState.INITIALIZING
        threading.Thread(target=self._load, args=(fut,), name="trocr-init", daemon=True).start()
        return fut

    def _load(self, fut: concurrent.futures.Future) -> None:
        try:
            engine = self._engine_factory()
        except BaseException as e:
            with self._lock:
                self._state = EngineState.FAILED
                self._init_error = str(e) or type(e).__name__
            logger.error("[trocr_local] engine init failed: %s", self._init_error)
            fut.set_exception(e)
            return
        with self._lock:
            self._engine = engine
            self._state = EngineState.READY
        logger.info("[trocr_local] engine ready")
        fut.set_result(None)

    async def _ready(self, wait: Optional[float] = None) -> bool:
        if self._state is EngineState.READY:
            return True
        fut = self._start_init()
        try:
            await asyncio.wait_for(asyncio.shield(asyncio.wrap_future(fut)), wait)
        except asyncio.CancelledError:
            raise
        except Exception:
            return False
        return self._state is EngineState.READY

    def _has_degraded_path(self) -> bool:
        return bool(self.fallback_url) or self.stub_fallback

    async def is_available(self) -> bool:
        # a configured degraded path can answer while the engine loads or after it failed
        if self._state is not EngineState.READY and self._has_degraded_path():
            self._start_init()
            return True
        try:
            return await self._ready()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.warning("[trocr_local] availability check failed", exc_info=True)
            return False

    async def recognize_math(self, payload: bytes) -> RecognitionResult:
        return await self._recognize(payload, "math")

    async def recognize_text(self, payload: bytes) -> RecognitionResult:
        return await self._recognize(payload, "text")

    async def _recognize(self, payload: bytes, kind: RecognitionKind) -> RecognitionResult:
        try:
            wait = self.init_wait_s if self._has_degraded_path() else None
            if not await self._ready(wait):
                return await self._degraded(payload, kind)
            img = _bytes_to_image(payload)
            raw, meta = await asyncio.to_thread(self._engine.run, img, kind)
            out = normalize(raw)
            if not out:
                return RecognitionResult.failure(f"Failed to recognize {'expression' if kind == 'math' else 'text'}")
            if kind == "math":
                return RecognitionResult(success=True, latex=out, confidence=MATH_CONFIDENCE, raw_data=meta)
            return RecognitionResult(success=True, text=out, confidence=TEXT_CONFIDENCE, raw_data=meta)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("[trocr_local] %s recognition error: %s", kind, e)
            return RecognitionResult.failure(str(e) or type(e).__name__)

    async def _degraded(self, payload: bytes, kind: RecognitionKind) -> RecognitionResult:
        reason = f"local engine not ready ({self._init_error or self._state.value})"
        if self.fallback_url:
            result = await self._call_fallback_api(payload, kind, reason)
            if result is not None:
                return result
        if self.stub_fallback:
            logger.info("[trocr_local] using placeholder for %s: %s", kind, reason)
            if kind == "math":
                return RecognitionResult(
                    success=True, latex=STUB_LATEX, confidence=STUB_CONFIDENCE,
                    fallback_provider=FALLBACK_STUB, error=reason,
                )
            return RecognitionResult(
                success=True, text=STUB_TEXT, confidence=STUB_CONFIDENCE,
                fallback_provider=FALLBACK_STUB, error=reason,
            )
        return RecognitionResult.failure(reason)

    async def _call_fallback_api(self, payload: bytes, kind: RecognitionKind, reason: str) -> Optional[RecognitionResult]:
        url = f"{self.fallback_url}/{kind}"
        mime = sniff_mime(payload) or "application/octet-stream"
        try:
            async with httpx.AsyncClient(timeout=self.fallback_timeout_s) as client:
                resp = await client.post(url, files={"image": ("image", payload, mime)})
                resp.raise_for_status()
                result = RecognitionResult.model_validate(resp.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("[trocr_local] fallback api %s failed: %s", url, e)
            return None
        logger.info("[trocr_local] fallback api answered %s success=%s", kind, result.success)
        update = {"fallback_provider": FALLBACK_API}
        if result.success:
            update["error"] = reason
        return result.model_copy(update=update)
