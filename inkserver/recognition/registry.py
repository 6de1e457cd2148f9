import logging
import threading
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional

from .providers.base import RecognitionProvider

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """
    id -> provider mapping, enumerated in registration order.

    Writes copy the mapping and swap it in under a lock; readers only ever
    see a complete, immutable snapshot. Re-registering an id replaces the
    provider but keeps its original slot in the order.
    """

    def __init__(self, providers: Iterable[RecognitionProvider] = ()):
        self._lock = threading.Lock()
        self._snapshot: Mapping[str, RecognitionProvider] = MappingProxyType({})
        for p in providers:
            self.register(p)

    def register(self, provider: RecognitionProvider) -> None:
        with self._lock:
            nxt = dict(self._snapshot)
            if provider.id in nxt:
                logger.info("[registry] replacing provider id=%s", provider.id)
            nxt[provider.id] = provider
            self._snapshot = MappingProxyType(nxt)

    def unregister(self, provider_id: str) -> None:
        with self._lock:
            if provider_id not in self._snapshot:
                return
            nxt = dict(self._snapshot)
            del nxt[provider_id]
            self._snapshot = MappingProxyType(nxt)

    def get(self, provider_id: str) -> Optional[RecognitionProvider]:
        return self._snapshot.get(provider_id)

    def list(self) -> List[RecognitionProvider]:
        return list(self._snapshot.values())

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._snapshot
