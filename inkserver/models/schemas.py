from __future__ import annotations

from typing import Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


RecognitionKind = Literal["math", "text"]

FALLBACK_API = "api"
FALLBACK_STUB = "stub"


class UsageLimits(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    max_requests_per_day: Optional[int] = Field(default=None, alias="maxRequestsPerDay")
    max_requests_per_hour: Optional[int] = Field(default=None, alias="maxRequestsPerHour")


class RecognitionCapabilities(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    supports_math_recognition: bool = Field(alias="supportsMathRecognition")
    supports_text_recognition: bool = Field(alias="supportsTextRecognition")
    supports_diagram_recognition: bool = Field(default=False, alias="supportsDiagramRecognition")
    supported_image_formats: Tuple[str, ...] = Field(default=(), alias="supportedImageFormats")
    max_image_size: Optional[int] = Field(default=None, alias="maxImageSize")  # bytes
    usage_limits: Optional[UsageLimits] = Field(default=None, alias="usageLimits")

    def supports(self, kind: RecognitionKind) -> bool:
        if kind == "math":
            return self.supports_math_recognition
        return self.supports_text_recognition


class RecognitionResult(BaseModel):
    """
    Normalized outcome of one recognition call.
    success=True carries latex and/or text; success=False carries error.
    """
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    latex: Optional[str] = None
    text: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    error: Optional[str] = None
    fallback_provider: Optional[str] = Field(default=None, alias="fallbackProvider")
    raw_data: Optional[Any] = Field(default=None, alias="rawData")

    @model_validator(mode="after")
    def _check_invariant(self) -> "RecognitionResult":
        if self.success and not (self.latex or self.text):
            raise ValueError("successful result must carry latex or text")
        if not self.success and not self.error:
            raise ValueError("failed result must carry an error message")
        return self

    @classmethod
    def failure(cls, error: str, **extra: Any) -> "RecognitionResult":
        return cls(success=False, confidence=0.0, error=error or "recognition failed", **extra)

    def has_output_for(self, kind: RecognitionKind) -> bool:
        # Math results may come back as plain text with inline math
        if kind == "math":
            return bool(self.latex or self.text)
        return bool(self.text)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ProviderInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    requires_credentials: bool = Field(alias="requiresCredentials")
    is_available: bool = Field(alias="isAvailable")
    capabilities: RecognitionCapabilities


class ProvidersResponse(BaseModel):
    success: bool = True
    providers: List[ProviderInfo] = Field(default_factory=list)
