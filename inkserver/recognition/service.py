import asyncio
import logging
from typing import Any, Iterable, List, Optional

from ..models.schemas import (
    ProviderInfo,
    RecognitionKind,
    RecognitionResult,
)
from . import payload as payload_mod
from .errors import (
    NoProvidersAvailable,
    ProviderCallFailed,
    ProviderNotFound,
    ProviderUnavailable,
)
from .providers.base import RecognitionProvider, method_for
from .registry import ProviderRegistry

logger = logging.getLogger(__name__)

ALL_FAILED = "recognition failed with all available providers"

_UNSET: Any = object()


class RecognitionService:
    """
    Dispatches one recognition request across registered providers.

    With an explicit provider id the call goes straight to that provider.
    Otherwise available providers are tried one at a time in registration
    order and the first successful result wins.
    """

    def __init__(
        self,
        providers: Iterable[RecognitionProvider] = (),
        timeout_s: Optional[float] = None,
        registry: Optional[ProviderRegistry] = None,
    ):
        self.registry = registry if registry is not None else ProviderRegistry()
        self.timeout_s = timeout_s
        for p in providers:
            self.registry.register(p)

    # registry passthroughs
    def register_provider(self, provider: RecognitionProvider) -> None:
        self.registry.register(provider)

    def unregister_provider(self, provider_id: str) -> None:
        self.registry.unregister(provider_id)

    def get_provider(self, provider_id: str) -> Optional[RecognitionProvider]:
        return self.registry.get(provider_id)

    def get_all_providers(self) -> List[RecognitionProvider]:
        return self.registry.list()

    async def recognize_math(self, data: Any, provider_id: Optional[str] = None, timeout_s: Any = _UNSET) -> RecognitionResult:
        return await self.recognize(data, "math", provider_id, timeout_s=timeout_s)

    async def recognize_text(self, data: Any, provider_id: Optional[str] = None, timeout_s: Any = _UNSET) -> RecognitionResult:
        return await self.recognize(data, "text", provider_id, timeout_s=timeout_s)

    async def recognize(
        self,
        data: Any,
        kind: RecognitionKind,
        provider_id: Optional[str] = None,
        *,
        timeout_s: Any = _UNSET,
    ) -> RecognitionResult:
        """
        Raises InvalidPayload, ProviderNotFound, ProviderUnavailable.
        Every other outcome, including total failure, comes back as a Result.
        """
        deadline = self.timeout_s if timeout_s is _UNSET else timeout_s
        blob = payload_mod.normalize(data)

        if provider_id:
            return await self._recognize_explicit(blob, kind, provider_id, deadline)

        try:
            candidates = await self._candidates(blob, kind, deadline)
        except NoProvidersAvailable as e:
            logger.warning("[recognition] kind=%s %s", kind, e)
            return RecognitionResult.failure(str(e))

        last_error: Optional[str] = None
        for provider in candidates:
            try:
                result = await self._attempt(provider, blob, kind, deadline)
            except ProviderCallFailed as e:
                last_error = e.message
                logger.warning("[recognition] provider=%s kind=%s failed: %s", provider.id, kind, e.message)
                continue
            logger.info(
                "[recognition] provider=%s kind=%s ok confidence=%.2f fallback=%s",
                provider.id, kind, result.confidence, result.fallback_provider,
            )
            return result

        return RecognitionResult.failure(last_error or ALL_FAILED)

    async def _recognize_explicit(
        self, blob: bytes, kind: RecognitionKind, provider_id: str, deadline: Optional[float]
    ) -> RecognitionResult:
        provider = self.registry.get(provider_id)
        if provider is None:
            raise ProviderNotFound(provider_id)
        if not await self._probe(provider, deadline):
            raise ProviderUnavailable(provider.id, provider.name)
        try:
            return await self._call(provider, blob, kind, deadline)
        except ProviderCallFailed as e:
            logger.warning("[recognition] provider=%s kind=%s failed (explicit): %s", provider_id, kind, e.message)
            return RecognitionResult.failure(e.message)

    async def _candidates(
        self, blob: bytes, kind: RecognitionKind, deadline: Optional[float]
    ) -> List[RecognitionProvider]:
        mime = payload_mod.sniff_mime(blob)
        out: List[RecognitionProvider] = []
        for provider in self.registry.list():
            if not _fits(provider, blob, kind, mime):
                continue
            if await self._probe(provider, deadline):
                out.append(provider)
        if not out:
            raise NoProvidersAvailable()
        return out

    async def _probe(self, provider: RecognitionProvider, deadline: Optional[float]) -> bool:
        try:
            return bool(await asyncio.wait_for(provider.is_available(), deadline))
        except asyncio.TimeoutError:
            logger.warning("[recognition] availability check for %s timed out after %ss", provider.id, deadline)
        except Exception:
            logger.warning("[recognition] availability check for %s raised", provider.id, exc_info=True)
        return False

    async def _call(
        self, provider: RecognitionProvider, blob: bytes, kind: RecognitionKind, deadline: Optional[float]
    ) -> RecognitionResult:
        """One provider call; raised errors and timeouts become ProviderCallFailed."""
        fn = method_for(provider, kind)
        try:
            result = await asyncio.wait_for(fn(blob), deadline)
        except asyncio.TimeoutError:
            raise ProviderCallFailed(provider.id, f"provider {provider.id} timed out after {deadline}s")
        except Exception as e:
            raise ProviderCallFailed(provider.id, str(e) or type(e).__name__) from e
        if not isinstance(result, RecognitionResult):
            raise ProviderCallFailed(provider.id, f"provider {provider.id} returned {type(result).__name__}")
        return result

    async def _attempt(
        self, provider: RecognitionProvider, blob: bytes, kind: RecognitionKind, deadline: Optional[float]
    ) -> RecognitionResult:
        result = await self._call(provider, blob, kind, deadline)
        if not result.success:
            raise ProviderCallFailed(provider.id, result.error or ALL_FAILED)
        if not result.has_output_for(kind):
            raise ProviderCallFailed(provider.id, f"provider {provider.id} returned no {kind} output")
        return result

    async def describe_providers(self) -> List[ProviderInfo]:
        """Snapshot for GET /recognition/providers."""
        infos = []
        for provider in self.registry.list():
            infos.append(
                ProviderInfo(
                    id=provider.id,
                    name=provider.name,
                    requires_credentials=provider.requires_credentials,
                    is_available=await self._probe(provider, self.timeout_s),
                    capabilities=provider.get_capabilities(),
                )
            )
        return infos


def _fits(provider: RecognitionProvider, blob: bytes, kind: RecognitionKind, mime: Optional[str]) -> bool:
    try:
        caps = provider.get_capabilities()
    except Exception:
        logger.warning("[recognition] get_capabilities for %s raised", provider.id, exc_info=True)
        return True
    if not caps.supports(kind):
        logger.debug("[recognition] skip %s: no %s support", provider.id, kind)
        return False
    if caps.max_image_size is not None and len(blob) > caps.max_image_size:
        logger.debug("[recognition] skip %s: %d bytes > %d", provider.id, len(blob), caps.max_image_size)
        return False
    if mime and caps.supported_image_formats and mime not in caps.supported_image_formats:
        logger.debug("[recognition] skip %s: format %s unsupported", provider.id, mime)
        return False
    return True
