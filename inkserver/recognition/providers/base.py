from typing import Dict, Protocol, runtime_checkable

from ...models.schemas import RecognitionCapabilities, RecognitionKind, RecognitionResult


@runtime_checkable
class RecognitionProvider(Protocol):
    id: str
    name: str
    requires_credentials: bool

    async def is_available(self) -> bool:
        """Readiness check. Never raises; failures mean False."""
        ...

    def set_credentials(self, credentials: Dict[str, str]) -> None:
        """No-op for providers that don't take credentials."""
        ...

    async def recognize_math(self, payload: bytes) -> RecognitionResult:
        """Return a Result; internal failures come back as success=False."""
        ...

    async def recognize_text(self, payload: bytes) -> RecognitionResult:
        ...

    def get_capabilities(self) -> RecognitionCapabilities:
        ...


def method_for(provider: RecognitionProvider, kind: RecognitionKind):
    if kind == "math":
        return provider.recognize_math
    if kind == "text":
        return provider.recognize_text
    raise ValueError(f"unknown recognition kind: {kind}")
