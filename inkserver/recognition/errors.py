from typing import Optional


class RecognitionError(RuntimeError):
    """Base class for failures raised by the recognition layer."""


class InvalidPayload(RecognitionError, ValueError):
    pass


class ProviderNotFound(RecognitionError, LookupError):
    def __init__(self, provider_id: str):
        super().__init__(f"Provider with id {provider_id} not found")
        self.provider_id = provider_id


class ProviderUnavailable(RecognitionError):
    def __init__(self, provider_id: str, name: Optional[str] = None, msg: str = ""):
        label = name or provider_id
        super().__init__(f"Provider {label} is not available" + (f": {msg}" if msg else ""))
        self.provider_id = provider_id
        self.name = label


class ProviderCallFailed(RecognitionError):
    def __init__(self, provider_id: str, message: str):
        super().__init__(message)
        self.provider_id = provider_id
        self.message = message


class NoProvidersAvailable(RecognitionError):
    def __init__(self, message: str = "no available recognition providers"):
        super().__init__(message)
