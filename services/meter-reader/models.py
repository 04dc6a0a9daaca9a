"""Pydantic models for readings, metrics, stored rows and response envelopes."""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

MeterType = Literal["electricity", "water", "gas", "unknown"]
Confidence = Literal["high", "medium", "low"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class MeterReading(BaseModel):
    meter_id: str = "UNKNOWN"
    meter_type: MeterType = "unknown"
    reading_value: float = 0.0
    unit: str = "unknown"
    confidence: Confidence = "low"
    raw_response: str = ""


class ProcessingMetrics(BaseModel):
    processing_time_ms: int = Field(ge=0)
    image_size_bytes: int = Field(ge=0)
    confidence_score: float = 0.5


class EncodedImage(BaseModel):
    data: str
    mime_type: str
    size_bytes: int


class ReadingRow(BaseModel):
    """One stored reading, as returned by the backing store."""

    id: Any = None
    user_id: str
    meter_id: str
    meter_type: str
    reading_value: float
    unit: str
    confidence: str
    confidence_score: float | None = None
    processing_time_ms: int | None = None
    image_size_bytes: int | None = None
    created_at: str | None = None

    model_config = {"extra": "allow"}


class MeterStatistics(BaseModel):
    total_readings: int = 0
    meters_count: int = 0
    avg_confidence: float = 0.0
    meters_by_type: dict[str, int] = {}

    model_config = {"extra": "allow"}


class ReadingResult(MeterReading):
    metrics: ProcessingMetrics
    persisted_id: Any = None


class ApiResponse(BaseModel):
    success: bool
    data: Any = None
    error: str | None = None
    timestamp: str = Field(default_factory=utc_now_iso)
