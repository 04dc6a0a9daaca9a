"""Extraction orchestrator: call the vision model, parse and normalize its reply.

The parser is strict about JSON (no regex recovery) and lenient about
fields: every field of a MeterReading is always populated, with a fixed
default replacing anything missing or uncoercible.
"""

import json
import logging
import math
import time

from errors import ParseError
from models import EncodedImage, MeterReading, ProcessingMetrics
from prompts import METER_READING_PROMPT
from vision_client import VisionClient

logger = logging.getLogger(__name__)

DEFAULT_METER_ID = "UNKNOWN"
DEFAULT_UNIT = "unknown"
DEFAULT_CONFIDENCE = "low"
DEFAULT_CONFIDENCE_SCORE = 0.5

METER_TYPES = {"electricity", "water", "gas", "unknown"}
CONFIDENCE_LEVELS = {"high", "medium", "low"}

FENCE_OPENERS = ("```json", "```")
FENCE = "```"


def extract_reading(
    image: EncodedImage,
    vision_client: VisionClient,
) -> tuple[MeterReading, ProcessingMetrics]:
    """Run one image through the vision model and normalize the result.

    Raises ExternalServiceError (from the client) or ParseError.
    """
    start = time.monotonic()

    raw_text = vision_client.extract(image.data, image.mime_type, METER_READING_PROMPT)
    logger.info("Vision model replied with %d chars", len(raw_text))

    reading, metrics = parse_reading(raw_text, image.size_bytes, start)
    logger.info(
        "Extracted reading: meter_type=%s confidence=%s in %dms",
        reading.meter_type, reading.confidence, metrics.processing_time_ms,
    )
    return reading, metrics


def parse_reading(
    raw: str,
    image_size_bytes: int,
    started: float,
) -> tuple[MeterReading, ProcessingMetrics]:
    """Parse the model reply into a reading plus metrics.

    ``started`` is the ``time.monotonic()`` value taken before the model call.
    """
    parsed = load_reply(raw)

    reading = MeterReading(
        meter_id=_coerce_text(parsed.get("meter_id"), DEFAULT_METER_ID),
        meter_type=_coerce_choice(parsed.get("meter_type"), METER_TYPES, "unknown"),
        reading_value=coerce_number(parsed.get("reading_value")),
        unit=_coerce_text(parsed.get("unit"), DEFAULT_UNIT),
        confidence=_coerce_choice(parsed.get("confidence"), CONFIDENCE_LEVELS, DEFAULT_CONFIDENCE),
        raw_response=raw,
    )

    elapsed_ms = max(0, int((time.monotonic() - started) * 1000))
    metrics = ProcessingMetrics(
        processing_time_ms=elapsed_ms,
        image_size_bytes=image_size_bytes,
        confidence_score=coerce_confidence_score(parsed.get("confidence_score")),
    )
    return reading, metrics


def strip_code_fences(raw: str) -> str:
    """Remove a leading ```json / ``` marker and a trailing ``` marker."""
    cleaned = (raw or "").strip()

    for opener in FENCE_OPENERS:
        if cleaned.startswith(opener):
            cleaned = cleaned[len(opener):]
            break

    if cleaned.endswith(FENCE):
        cleaned = cleaned[: -len(FENCE)]

    return cleaned.strip()


def load_reply(raw: str) -> dict:
    """Parse the fence-stripped reply as a JSON object or raise ParseError."""
    cleaned = strip_code_fences(raw)

    try:
        result = json.loads(cleaned)
    except (ValueError, RecursionError) as e:
        logger.warning("Could not parse JSON from model response: %s", (raw or "")[:200])
        raise ParseError(raw) from e

    if not isinstance(result, dict):
        logger.warning("Model response is JSON but not an object: %s", (raw or "")[:200])
        raise ParseError(raw, "Vision model response is not a JSON object")

    return result


def coerce_number(value, default: float = 0.0) -> float:
    """Numeric coercion for reading_value.

    Numbers pass through; strings are parsed, accepting a decimal comma.
    Anything else, or a non-finite result, yields ``default``.
    """
    if isinstance(value, bool) or value is None:
        return default

    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return default
    elif isinstance(value, str):
        text = value.strip().replace(" ", "")
        if text.count(",") == 1 and "." not in text:
            text = text.replace(",", ".")
        try:
            number = float(text)
        except (ValueError, OverflowError):
            return default
    else:
        return default

    return number if math.isfinite(number) else default


def coerce_confidence_score(value) -> float:
    """Accept a numeric score in [0, 1]; anything else is replaced, never clamped."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE_SCORE
    try:
        score = float(value)
    except OverflowError:
        return DEFAULT_CONFIDENCE_SCORE
    if not math.isfinite(score) or not 0.0 <= score <= 1.0:
        return DEFAULT_CONFIDENCE_SCORE
    return score


def _coerce_text(value, default: str) -> str:
    if value is None or isinstance(value, (bool, dict, list)):
        return default
    text = str(value).strip()
    return text or default


def _coerce_choice(value, allowed: set[str], default: str) -> str:
    if not isinstance(value, str):
        return default
    choice = value.strip().lower()
    return choice if choice in allowed else default
