"""Tests for reply parsing, field normalization and the extraction pipeline."""

import json
import sys
import time
from pathlib import Path
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from encoder import encode_image
from errors import ExternalServiceError, ParseError
from extraction import (
    DEFAULT_CONFIDENCE_SCORE,
    coerce_confidence_score,
    coerce_number,
    extract_reading,
    load_reply,
    parse_reading,
    strip_code_fences,
)
from prompts import EXPECTED_KEYS, METER_READING_PROMPT


def _parse(raw: str):
    return parse_reading(raw, 1024, time.monotonic())


class TestStripCodeFences:
    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence_untouched(self):
        assert strip_code_fences('{"a": 1}') == '{"a": 1}'

    def test_whitespace_padded(self):
        assert strip_code_fences('  \n```json {"a": 1} ```  \n') == '{"a": 1}'

    def test_idempotent(self):
        once = strip_code_fences('```json\n{"a": 1}\n```')
        assert strip_code_fences(once) == once


class TestLoadReply:
    def test_direct_json(self):
        assert load_reply('{"meter_id": "E1"}') == {"meter_id": "E1"}

    def test_not_json_raises(self):
        with pytest.raises(ParseError):
            load_reply("The meter shows 12345 kWh.")

    def test_empty_string_raises(self):
        with pytest.raises(ParseError):
            load_reply("")

    def test_array_raises(self):
        with pytest.raises(ParseError, match="not a JSON object"):
            load_reply("[1, 2, 3]")

    def test_no_preamble_recovery(self):
        """Text around the JSON is not recovered by searching for braces."""
        with pytest.raises(ParseError):
            load_reply('Here is the reading: {"meter_id": "E1"}')

    def test_deeply_nested_reply_is_parse_error(self):
        with pytest.raises(ParseError):
            load_reply("[" * 100_000 + "]" * 100_000)

    def test_excerpt_truncated_to_200_chars(self):
        raw = "x" * 1000
        with pytest.raises(ParseError) as exc_info:
            load_reply(raw)
        assert exc_info.value.excerpt == "x" * 200
        assert "x" * 201 not in str(exc_info.value)


class TestParseReading:
    def test_well_formed_reply(self, electricity_reply: str):
        reading, metrics = _parse(electricity_reply)
        assert reading.meter_id == "E123"
        assert reading.meter_type == "electricity"
        assert reading.reading_value == 31781.8
        assert reading.unit == "kWh"
        assert reading.confidence == "high"
        assert reading.raw_response == electricity_reply
        assert metrics.confidence_score == 0.95
        assert metrics.image_size_bytes == 1024
        assert metrics.processing_time_ms >= 0

    def test_fenced_reply_matches_unwrapped(self, electricity_reply: str, fenced_reply: str):
        plain, _ = _parse(electricity_reply)
        fenced, _ = _parse(fenced_reply)
        assert fenced.model_dump(exclude={"raw_response"}) == plain.model_dump(exclude={"raw_response"})
        assert fenced.raw_response == fenced_reply

    def test_numeric_string_reading(self, gas_reply: str):
        reading, _ = _parse(gas_reply)
        assert reading.reading_value == 1234.567
        assert reading.meter_type == "gas"
        assert reading.unit == "m3"

    def test_empty_object_gets_all_defaults(self):
        reading, metrics = _parse("{}")
        assert reading.meter_id == "UNKNOWN"
        assert reading.meter_type == "unknown"
        assert reading.reading_value == 0
        assert reading.unit == "unknown"
        assert reading.confidence == "low"
        assert metrics.confidence_score == 0.5

    def test_nulls_get_defaults(self):
        raw = json.dumps({key: None for key in EXPECTED_KEYS})
        reading, metrics = _parse(raw)
        assert reading.meter_id == "UNKNOWN"
        assert reading.reading_value == 0
        assert metrics.confidence_score == 0.5

    def test_non_numeric_reading_value_defaults_to_zero(self):
        reading, _ = _parse('{"reading_value": "not-a-number"}')
        assert reading.reading_value == 0

    def test_missing_confidence_score_is_exactly_half(self):
        _, metrics = _parse('{"meter_id": "W9", "confidence": "medium"}')
        assert metrics.confidence_score == 0.5

    def test_unrecognized_meter_type_is_unknown(self):
        reading, _ = _parse('{"meter_type": "heat"}')
        assert reading.meter_type == "unknown"

    def test_meter_type_case_insensitive(self):
        reading, _ = _parse('{"meter_type": "Water"}')
        assert reading.meter_type == "water"

    def test_unrecognized_confidence_is_low(self):
        reading, _ = _parse('{"confidence": "certain"}')
        assert reading.confidence == "low"

    def test_numeric_meter_id_kept_as_text(self):
        reading, _ = _parse('{"meter_id": 55012}')
        assert reading.meter_id == "55012"

    def test_blank_meter_id_is_unknown(self):
        reading, _ = _parse('{"meter_id": "   "}')
        assert reading.meter_id == "UNKNOWN"

    def test_processing_time_counts_from_start(self):
        started = time.monotonic() - 0.25
        _, metrics = parse_reading("{}", 10, started)
        assert metrics.processing_time_ms >= 250


class TestCoerceNumber:
    @pytest.mark.parametrize("value,expected", [
        (12, 12.0),
        (31781.8, 31781.8),
        ("00123.4", 123.4),
        ("1234,567", 1234.567),
        (" 42 ", 42.0),
    ])
    def test_coercible(self, value, expected):
        assert coerce_number(value) == expected

    @pytest.mark.parametrize("value", [None, True, "abc", "", [1], {"v": 1}, "nan", "inf"])
    def test_uncoercible_defaults_to_zero(self, value):
        assert coerce_number(value) == 0

    def test_integer_too_large_for_float(self):
        assert coerce_number(10 ** 400) == 0

    def test_huge_integer_in_reply_defaults_to_zero(self):
        reading, _ = _parse('{"reading_value": 1' + "0" * 400 + "}")
        assert reading.reading_value == 0


class TestCoerceConfidenceScore:
    def test_in_range_kept(self):
        assert coerce_confidence_score(0.82) == 0.82

    def test_zero_is_a_valid_score(self):
        assert coerce_confidence_score(0) == 0.0

    @pytest.mark.parametrize("value", [None, "0.9", True, 1.5, -0.1, float("nan")])
    def test_invalid_replaced_with_default(self, value):
        assert coerce_confidence_score(value) == DEFAULT_CONFIDENCE_SCORE

    def test_integer_too_large_for_float(self):
        assert coerce_confidence_score(10 ** 400) == DEFAULT_CONFIDENCE_SCORE

    def test_huge_integer_in_reply_defaults(self):
        _, metrics = _parse('{"confidence_score": 1' + "0" * 400 + "}")
        assert metrics.confidence_score == DEFAULT_CONFIDENCE_SCORE


class TestExtractReading:
    """Tests for the full pipeline with a mocked vision client."""

    def test_successful_extraction(self, sample_image_bytes: bytes, electricity_reply: str):
        mock_client = MagicMock()
        mock_client.extract.return_value = electricity_reply
        image = encode_image("meter.png", sample_image_bytes)

        reading, metrics = extract_reading(image, mock_client)

        assert reading.reading_value == 31781.8
        assert metrics.image_size_bytes == len(sample_image_bytes)
        mock_client.extract.assert_called_once_with(image.data, "image/png", METER_READING_PROMPT)

    def test_client_error_propagates(self, sample_image_bytes: bytes):
        mock_client = MagicMock()
        mock_client.extract.side_effect = ExternalServiceError("rate limited")

        with pytest.raises(ExternalServiceError, match="rate limited"):
            extract_reading(encode_image("meter.jpg", sample_image_bytes), mock_client)

    def test_empty_reply_is_parse_error(self, sample_image_bytes: bytes):
        mock_client = MagicMock()
        mock_client.extract.return_value = ""

        with pytest.raises(ParseError):
            extract_reading(encode_image("meter.jpg", sample_image_bytes), mock_client)


class TestPrompt:
    def test_prompt_names_every_expected_key(self):
        for key in EXPECTED_KEYS:
            assert f'"{key}"' in METER_READING_PROMPT

    def test_prompt_states_decimal_rules(self):
        assert "Electricity meters" in METER_READING_PROMPT
        assert "LAST THREE digits" in METER_READING_PROMPT
