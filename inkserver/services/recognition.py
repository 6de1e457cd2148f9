import logging
from typing import Optional

from ..config import Settings, get_settings
from ..recognition.providers.base import RecognitionProvider
from ..recognition.service import RecognitionService

logger = logging.getLogger(__name__)


def _make_provider(provider_id: str, settings: Settings) -> Optional[RecognitionProvider]:
    if provider_id in ("trocr_local", "trocr", "local"):
        # Import only when requested; the engine itself pulls torch lazily
        from ..recognition.providers.trocr_local import TrOCRLocal

        return TrOCRLocal(
            text_model=settings.local_text_model,
            math_model=settings.local_math_model,
            fallback_url=settings.local_fallback_url,
            stub_fallback=settings.local_stub_fallback,
        )
    if provider_id == "mathpix":
        from ..recognition.providers.mathpix import MathPixProvider

        # Registered even without credentials; it just reports unavailable
        return MathPixProvider(
            app_id=settings.mathpix_app_id,
            api_key=settings.mathpix_api_key,
            base_url=settings.mathpix_api_url,
        )
    return None


def build_service(settings: Optional[Settings] = None) -> RecognitionService:
    s = settings or get_settings()
    service = RecognitionService(timeout_s=s.timeout_s)
    for pid in s.providers:
        provider = _make_provider(pid, s)
        if provider is None:
            logger.warning("[recognition] unknown provider %r in RECOGNITION_PROVIDERS; skipped", pid)
            continue
        service.register_provider(provider)
        logger.info("[recognition] registered provider=%s", provider.id)
    if s.mathpix_app_id and s.mathpix_api_key and "mathpix" not in s.providers:
        logger.info("[recognition] MathPix credentials present but mathpix not in RECOGNITION_PROVIDERS")
    return service
