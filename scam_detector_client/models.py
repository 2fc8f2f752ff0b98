from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from scam_detector_client.config import PROGRESS_INTERVAL


class ProgressStage(str, Enum):
    checking = "checking"
    connecting = "connecting"
    waiting = "waiting"
    uploading = "uploading"
    finalizing = "finalizing"
    ready = "ready"
    cold = "cold"
    warming = "warming"
    timeout = "timeout"


class ProgressEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: ProgressStage
    message: str
    percent: int = Field(ge=0, le=100)


class ErrorCategory(str, Enum):
    server_unavailable = "server-unavailable"
    gateway_timeout = "gateway-timeout"
    client_error = "client-error"
    unknown = "unknown"


class ClassifiedError(BaseModel):
    """A failed call reduced to what the retry loop and the UI need"""

    model_config = ConfigDict(frozen=True)

    retryable: bool
    category: ErrorCategory
    message: str
    status: Optional[int] = None
    detail: str = ""


class RetryPolicy(BaseModel):
    """Bounded exponential backoff with an overall deadline.

    ``retry_predicate`` overrides the classifier's own ``retryable`` verdict
    when given.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=8, ge=1)
    initial_delay: float = Field(default=8.0, ge=0)
    backoff_multiplier: float = Field(default=1.5, gt=1)
    max_delay: float = Field(default=20.0, ge=0)
    max_total_wait: float = Field(default=150.0, gt=0)
    progress_interval: float = Field(default=PROGRESS_INTERVAL, gt=0)
    retry_predicate: Optional[Callable[[ClassifiedError], bool]] = None

    def compute_delay(self, attempt: int) -> float:
        """Delay to wait after the given 1-based attempt fails"""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1, got {attempt}")
        return min(
            self.initial_delay * (self.backoff_multiplier ** (attempt - 1)),
            self.max_delay,
        )

    def should_retry(self, error: ClassifiedError) -> bool:
        if self.retry_predicate is not None:
            return bool(self.retry_predicate(error))
        return error.retryable


class ServiceStatus(BaseModel):
    is_ready: bool
    cold_start_estimate_seconds: int = Field(ge=0)
    response_time: Optional[float] = None

    @property
    def stage(self) -> ProgressStage:
        if not self.is_ready:
            return ProgressStage.cold
        if self.cold_start_estimate_seconds > 0:
            return ProgressStage.warming
        return ProgressStage.ready


class ApiStatus(BaseModel):
    is_awake: bool
    response_time_ms: float
    message: str


class FeatureWeight(BaseModel):
    term: str
    weight: float
    indicator_type: Optional[str] = None


class AnalysisResult(BaseModel):
    """Analysis payload normalized once on receipt.

    The backend reports ``important_features`` either as objects or as
    ``[term, weight]`` pairs, and sometimes names the verdict
    ``classification`` instead of ``prediction``.
    """

    prediction: str = ""
    confidence: float = 0.0
    high_risk_signals: list[str] = Field(default_factory=list)
    important_features: list[FeatureWeight] = Field(default_factory=list)
    explanations: list[str] = Field(default_factory=list)
    message_length: Optional[int] = None
    file_processed: Optional[str] = None
    file_type: Optional[str] = None
    raw_response: dict = Field(default_factory=dict)
    elapsed_time: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def _fill_prediction(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("prediction"):
            classification = data.get("classification")
            if classification:
                data = {**data, "prediction": classification}
        return data

    @field_validator("high_risk_signals", "explanations", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("important_features", mode="before")
    @classmethod
    def _normalize_features(cls, value: Any) -> Any:
        if value is None:
            return []
        features = []
        for item in value:
            if isinstance(item, (list, tuple)):
                term, weight = item
                features.append({"term": term, "weight": weight})
            else:
                features.append(item)
        return features

    @classmethod
    def from_response(cls, data: dict, elapsed_time: float) -> "AnalysisResult":
        return cls.model_validate(
            {**data, "raw_response": data, "elapsed_time": elapsed_time}
        )
