import json
import logging
from typing import Any, Dict, Optional

import httpx

from ...models.schemas import RecognitionCapabilities, RecognitionResult, UsageLimits
from ..payload import encode

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.mathpix.com/v3"
# MathPix doesn't always report confidence
DEFAULT_CONFIDENCE = 0.9


class MathPixProvider:
    """Remote OCR via the MathPix v3 API. Needs an app id and API key."""

    id = "mathpix"
    name = "MathPix API"
    requires_credentials = True

    def __init__(
        self,
        app_id: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        enable_diagrams: bool = True,
        timeout_s: float = 60,
    ):
        self.app_id = app_id or None
        self.api_key = api_key or None
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.enable_diagrams = enable_diagrams
        self.timeout_s = timeout_s

    def set_credentials(self, credentials: Dict[str, str]) -> None:
        app_id = credentials.get("app_id") or credentials.get("appId")
        api_key = credentials.get("api_key") or credentials.get("apiKey")
        if app_id:
            self.app_id = app_id
        if api_key:
            self.api_key = api_key

    async def is_available(self) -> bool:
        return bool(self.app_id and self.api_key)

    def get_capabilities(self) -> RecognitionCapabilities:
        return RecognitionCapabilities(
            supports_math_recognition=True,
            supports_text_recognition=True,
            supports_diagram_recognition=self.enable_diagrams,
            supported_image_formats=("image/png", "image/jpeg"),
            max_image_size=20 * 1024 * 1024,
            # rough plan default; depends on the subscription
            usage_limits=UsageLimits(max_requests_per_day=1000),
        )

    async def recognize_math(self, payload: bytes) -> RecognitionResult:
        body = {
            "src": encode(payload),
            "formats": ["latex_styled", "text"],
            "data_options": {"include_asciimath": True, "include_latex": True},
        }
        try:
            data = await self._post(body)
        except Exception as e:
            logger.warning("[mathpix] math recognition error: %s", e)
            return RecognitionResult.failure(str(e) or type(e).__name__)

        latex = data.get("latex_styled") or None
        text = data.get("text") or None
        if not (latex or text):
            return RecognitionResult.failure("No valid result returned from MathPix", raw_data=data)
        return RecognitionResult(
            success=True,
            latex=latex,
            text=text,
            confidence=_confidence(data),
            raw_data=data,
        )

    async def recognize_text(self, payload: bytes) -> RecognitionResult:
        body = {
            "src": encode(payload),
            "formats": ["text"],
            "data_options": {"include_latex": False},
        }
        try:
            data = await self._post(body)
        except Exception as e:
            logger.warning("[mathpix] text recognition error: %s", e)
            return RecognitionResult.failure(str(e) or type(e).__name__)

        text = data.get("text") or None
        if not text:
            return RecognitionResult.failure("No valid text result returned from MathPix", raw_data=data)
        return RecognitionResult(success=True, text=text, confidence=_confidence(data), raw_data=data)

    async def _post(self, body: dict) -> dict:
        if not (self.app_id and self.api_key):
            raise RuntimeError("MathPix credentials are not set")

        headers = {"app_id": self.app_id, "app_key": self.api_key}
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            resp = await client.post(f"{self.base_url}/text", headers=headers, json=body)
            try:
                resp.raise_for_status()
            except httpx.HTTPStatusError as he:
                code = getattr(he.response, "status_code", 500)
                raise RuntimeError(f"MathPix API error: {code} {_error_detail(he.response)}") from he
            data = resp.json()
        if not isinstance(data, dict):
            raise RuntimeError("MathPix API error: unexpected response shape")
        if data.get("error"):
            raise RuntimeError(f"MathPix API error: {data['error']}")
        return data


def _confidence(data: dict) -> float:
    c = data.get("confidence")
    if isinstance(c, (int, float)) and 0.0 < c <= 1.0:
        return float(c)
    return DEFAULT_CONFIDENCE


def _error_detail(resp: Any) -> str:
    try:
        return json.dumps(resp.json())
    except Exception:
        return (getattr(resp, "text", "") or "Unknown error")[:200]
