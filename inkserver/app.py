import logging
if __name__ == "__main__":
    raise SystemExit("Run with: python -m uvicorn inkserver.app:app --reload --port 8080")
from typing import Any, Optional, Tuple

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.datastructures import UploadFile
from starlette.responses import JSONResponse, Response

from .config import Settings, get_settings, summary
from .models.schemas import ProvidersResponse, RecognitionKind, RecognitionResult
from .recognition.errors import InvalidPayload, ProviderNotFound, ProviderUnavailable
from .recognition.payload import normalize
from .recognition.service import RecognitionService
from .services.recognition import build_service

# ---------------------------------------
# App logger
# ---------------------------------------
logger = logging.getLogger("inkserver")
if not logger.handlers:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

BOOT_VERSION = "0.1.0"
ALT_ORIGINS = ["http://127.0.0.1:5173", "http://localhost:5173"]

meta = APIRouter()
recognition = APIRouter()


class _RequestRejected(Exception):
    def __init__(self, status_code: int, error: str):
        super().__init__(error)
        self.status_code = status_code
        self.error = error


def _failure(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=RecognitionResult.failure(error).to_json())


# ---------------------------------------
# Health
# ---------------------------------------
@meta.get("/health")
@meta.get("/api/health")
def health():
    return {"ok": True, "service": "inkserver-recognition"}


@meta.get("/api/config")
def config_probe(request: Request):
    # no secrets
    return {"version": BOOT_VERSION, **summary(request.app.state.settings, safe=True)}


# ---------------------------------------
# Recognition
# ---------------------------------------
async def _read_image(request: Request) -> Tuple[Any, Optional[str]]:
    """
    Accept multipart/form (file or string field `image`) or JSON {image, providerId}.
    Returns (image, provider_id); image is None when missing.
    """
    ctype = (request.headers.get("content-type") or "").lower()
    if ctype.startswith("multipart/form-data") or ctype.startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        image = form.get("image")
        if isinstance(image, UploadFile):
            image = await image.read()
        provider_id = form.get("providerId")
        return image or None, (provider_id if isinstance(provider_id, str) and provider_id else None)

    try:
        body = await request.json()
    except ValueError:
        raise _RequestRejected(400, "Request body must be JSON or multipart form data")
    if not isinstance(body, dict):
        raise _RequestRejected(400, "Request body must be a JSON object")
    provider_id = body.get("providerId")
    if provider_id is not None and not isinstance(provider_id, str):
        raise _RequestRejected(400, "providerId must be a string")
    return body.get("image") or None, provider_id or None


async def _recognize(request: Request, kind: RecognitionKind) -> Response:
    service: RecognitionService = request.app.state.recognition
    settings: Settings = request.app.state.settings
    try:
        image, provider_id = await _read_image(request)
        if image is None:
            return _failure(400, "Image data is required")
        blob = normalize(image)
        if len(blob) > settings.max_upload_bytes:
            return _failure(413, f"Image exceeds {settings.max_upload_bytes} bytes")
        result = await service.recognize(blob, kind, provider_id)
    except _RequestRejected as e:
        return _failure(e.status_code, e.error)
    except (InvalidPayload, ProviderNotFound, ProviderUnavailable) as e:
        logger.warning("[recognition] %s rejected: %s", kind, e)
        return _failure(400, str(e))
    except Exception as e:
        logger.exception("[recognition] %s failed", kind)
        return JSONResponse(status_code=500, content={"success": False, "message": str(e) or "Internal server error"})

    logger.info(
        "[recognition] %s done success=%s confidence=%.2f fallback=%s",
        kind, result.success, result.confidence, result.fallback_provider,
    )
    return JSONResponse(status_code=200 if result.success else 400, content=result.to_json())


@recognition.post("/math")
async def recognize_math(request: Request):
    return await _recognize(request, "math")


@recognition.post("/text")
async def recognize_text(request: Request):
    return await _recognize(request, "text")


@recognition.get("/providers")
async def list_providers(request: Request):
    service: RecognitionService = request.app.state.recognition
    try:
        infos = await service.describe_providers()
    except Exception as e:
        logger.exception("[recognition] providers listing failed")
        return JSONResponse(status_code=500, content={"success": False, "message": str(e) or "Internal server error"})
    return ProvidersResponse(success=True, providers=infos).model_dump(mode="json", by_alias=True, exclude_none=True)


def create_app(service: Optional[RecognitionService] = None, settings: Optional[Settings] = None) -> FastAPI:
    s = settings or get_settings()
    app = FastAPI(title="inkserver", version=BOOT_VERSION)
    app.state.settings = s
    app.state.recognition = service if service is not None else build_service(s)

    # Explicit CORS allowlist for the Vite dev server
    allowed = sorted({s.frontend_origin, *ALT_ORIGINS})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
        max_age=600,
    )
    app.include_router(meta)
    app.include_router(recognition, prefix="/recognition")
    app.include_router(recognition, prefix="/api/recognition")

    logger.info("[boot] version=%s", BOOT_VERSION)
    logger.info("[boot] CORS allow_origins=%s", allowed)
    logger.info("[boot] env | %s", summary(s, safe=False))
    logger.info(
        "[boot] providers=%s",
        [p.id for p in app.state.recognition.get_all_providers()],
    )
    return app


app = create_app()
