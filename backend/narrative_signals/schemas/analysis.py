# backend/narrative_signals/schemas/analysis.py
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..models.signal import Momentum, RiskLevel, SignalStatus

MAX_HOURS_BACK = 24 * 14


def _normalize_choice(value: Any, choices: tuple, *, case_sensitive: bool = False) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    for choice in choices:
        if text == choice or (not case_sensitive and text.lower() == choice.lower()):
            return choice
    return None


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


# ---------------------------------------------------------------------------
# Model response contracts
# ---------------------------------------------------------------------------


class DetectedSignal(BaseModel):
    """One candidate signal proposed by the detection model."""

    model_config = ConfigDict(extra="ignore")

    headline: str = Field(min_length=1)
    summary: str = ""
    key_points: List[str] = Field(default_factory=list)
    sources: List[str] = Field(default_factory=list)
    raw_ingestion_ids: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    # Suggestions are advisory; unknown values fall back to defaults
    status: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("status", "suggested_status")
    )
    momentum: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("momentum", "suggested_momentum")
    )
    risk_level: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("risk_level", "suggested_risk_level")
    )

    @field_validator("headline")
    @classmethod
    def _strip_headline(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("headline must not be empty")
        return v

    @field_validator("key_points", "sources", "raw_ingestion_ids", "tags", mode="before")
    @classmethod
    def _coerce_lists(cls, v):
        return _string_list(v)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v):
        return _normalize_choice(v, SignalStatus.OPEN)

    @field_validator("momentum", mode="before")
    @classmethod
    def _normalize_momentum(cls, v):
        return _normalize_choice(v, Momentum.ALL)

    @field_validator("risk_level", mode="before")
    @classmethod
    def _normalize_risk(cls, v):
        return _normalize_choice(v, RiskLevel.ALL)


class DetectionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    signals: List[DetectedSignal] = Field(default_factory=list)
    analysis_notes: str = ""


class SignalUpdate(BaseModel):
    """A state change the momentum model asserts for an existing signal."""

    model_config = ConfigDict(extra="ignore")

    signal_id: str
    new_status: str
    new_momentum: str
    new_risk_level: Optional[str] = None
    reason: str = ""
    supporting_ingestion_ids: List[str] = Field(default_factory=list)

    @field_validator("signal_id")
    @classmethod
    def _strip_id(cls, v: str) -> str:
        return v.strip()

    @field_validator("new_status")
    @classmethod
    def _validate_status(cls, v: str) -> str:
        normalized = _normalize_choice(v, SignalStatus.OPEN)
        if normalized is None:
            raise ValueError(f"new_status must be one of {SignalStatus.OPEN}")
        return normalized

    @field_validator("new_momentum")
    @classmethod
    def _validate_momentum(cls, v: str) -> str:
        normalized = _normalize_choice(v, Momentum.ALL)
        if normalized is None:
            raise ValueError(f"new_momentum must be one of {Momentum.ALL}")
        return normalized

    @field_validator("new_risk_level")
    @classmethod
    def _validate_risk(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not str(v).strip():
            return None
        normalized = _normalize_choice(v, RiskLevel.ALL)
        if normalized is None:
            raise ValueError(f"new_risk_level must be one of {RiskLevel.ALL}")
        return normalized

    @field_validator("supporting_ingestion_ids", mode="before")
    @classmethod
    def _coerce_ids(cls, v):
        return _string_list(v)


class MomentumResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    signal_updates: List[SignalUpdate] = Field(default_factory=list)
    unchanged_signals: List[str] = Field(default_factory=list)
    analysis_notes: str = ""

    @field_validator("unchanged_signals", mode="before")
    @classmethod
    def _coerce_unchanged(cls, v):
        return _string_list(v)


# ---------------------------------------------------------------------------
# API bodies
# ---------------------------------------------------------------------------


class AnalysisRequest(BaseModel):
    project_id: UUID
    hours_back: Optional[int] = None

    @field_validator("hours_back")
    @classmethod
    def validate_hours_back(cls, v: Optional[int]) -> Optional[int]:
        if v is None:
            return v
        if v < 1 or v > MAX_HOURS_BACK:
            raise ValueError(f"hours_back must be between 1 and {MAX_HOURS_BACK}")
        return v


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class DetectionResult(BaseModel):
    success: bool
    project_id: str
    ingestions_analyzed: int = 0
    signals_detected: int = 0
    signals: List[Dict[str, Any]] = Field(default_factory=list)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    analysis_notes: str = ""
    errors: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    execution_time_ms: int = 0


class MomentumResult(BaseModel):
    success: bool
    project_id: str
    signals_analyzed: int = 0
    signals_updated: int = 0
    signals_unchanged: int = 0
    updated_signals: List[Dict[str, Any]] = Field(default_factory=list)
    unchanged_signal_ids: List[str] = Field(default_factory=list)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    analysis_notes: str = ""
    errors: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    execution_time_ms: int = 0


class FullAnalysisResult(BaseModel):
    success: bool
    project_id: str
    detection: DetectionResult
    momentum: MomentumResult
    token_usage: Dict[str, TokenUsage]
    error: Optional[str] = None
    execution_time_ms: int = 0


class EvidenceOut(BaseModel):
    ingestion_id: str
    reference_type: str
    linked_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)
    title: Optional[str] = None
    url: Optional[str] = None
    source_name: Optional[str] = None
    platform: Optional[str] = None
    ingested_at: Optional[datetime] = None
    excerpt: str = ""


class UsageSummaryOut(BaseModel):
    project_id: str
    days: int
    total_tokens: int
    total_cost: float
    total_calls: int
    breakdown_by_action: Dict[str, Dict[str, Any]]
