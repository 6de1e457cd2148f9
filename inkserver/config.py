# inkserver/config.py
import logging
import os
from pathlib import Path
from typing import Callable, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

_here = Path(__file__).resolve().parent
load_dotenv(_here / ".env")                        # inkserver/.env
load_dotenv(_here.parent / ".env", override=False)  # project root .env (optional)
load_dotenv()                                      # process env fallback

logger = logging.getLogger(__name__)

# Product defaults (in code)
DEFAULT_PROVIDERS = "trocr_local,mathpix"
DEFAULT_TIMEOUT_S = 30.0
DEFAULT_MATHPIX_API_URL = "https://api.mathpix.com/v3"
DEFAULT_TEXT_MODEL = "microsoft/trocr-base-handwritten"
DEFAULT_MATH_MODEL = "fhswf/TrOCR_Math_handwritten"
DEFAULT_MAX_UPLOAD_BYTES = 5 * 1024 * 1024
DEFAULT_FRONTEND_ORIGIN = "http://localhost:5173"


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    providers: List[str]
    timeout_s: Optional[float]
    mathpix_app_id: Optional[str] = None
    mathpix_api_key: Optional[str] = None
    mathpix_api_url: str = DEFAULT_MATHPIX_API_URL
    local_text_model: str = DEFAULT_TEXT_MODEL
    local_math_model: str = DEFAULT_MATH_MODEL
    local_fallback_url: Optional[str] = None
    local_stub_fallback: bool = True
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    frontend_origin: str = DEFAULT_FRONTEND_ORIGIN


def _env(name: str) -> Optional[str]:
    # Empty strings count as unset
    v = (os.getenv(name) or "").strip()
    return v or None


def _flag(name: str, default: bool) -> bool:
    v = _env(name)
    if v is None:
        return default
    return v not in ("0", "false", "False", "no", "off")


def _number(name: str, default, cast: Callable):
    raw = _env(name)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning("[config] %s=%r is not a number; using %s", name, raw, default)
        return default


def _timeout() -> Optional[float]:
    t = _number("RECOGNITION_TIMEOUT_S", DEFAULT_TIMEOUT_S, float)
    return t if t > 0 else None


def get_settings() -> Settings:
    """Read a fresh settings snapshot from the environment."""
    providers = [
        p.strip().lower()
        for p in (_env("RECOGNITION_PROVIDERS") or DEFAULT_PROVIDERS).split(",")
        if p.strip()
    ]
    return Settings(
        providers=providers,
        timeout_s=_timeout(),
        mathpix_app_id=_env("MATHPIX_APP_ID"),
        mathpix_api_key=_env("MATHPIX_API_KEY"),
        mathpix_api_url=(_env("MATHPIX_API_URL") or DEFAULT_MATHPIX_API_URL).rstrip("/"),
        local_text_model=_env("LOCAL_TEXT_MODEL") or DEFAULT_TEXT_MODEL,
        local_math_model=_env("LOCAL_MATH_MODEL") or DEFAULT_MATH_MODEL,
        local_fallback_url=_env("LOCAL_FALLBACK_URL"),
        local_stub_fallback=_flag("LOCAL_STUB_FALLBACK", True),
        max_upload_bytes=_number("MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES, int),
        frontend_origin=_env("FRONTEND_ORIGIN") or DEFAULT_FRONTEND_ORIGIN,
    )


def summary(settings: Optional[Settings] = None, safe: bool = True) -> dict:
    s = settings or get_settings()
    out = {
        "providers": list(s.providers),
        "timeout_s": s.timeout_s,
        "local_text_model": s.local_text_model,
        "local_math_model": s.local_math_model,
        "local_fallback_url": s.local_fallback_url,
        "local_stub_fallback": s.local_stub_fallback,
        "max_upload_bytes": s.max_upload_bytes,
    }
    if not safe:
        out["mathpix_app_id_present"] = bool(s.mathpix_app_id)
        out["mathpix_api_key_present"] = bool(s.mathpix_api_key)
    return out
