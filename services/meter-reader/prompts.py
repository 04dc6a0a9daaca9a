"""Instruction sent with every meter photo.

Spells out the exact JSON keys the parser expects and the decimal placement
rules for electricity and gas meters, which print fractional digits without
a visible separator.
"""

_JSON_SUFFIX = """

CRITICAL OUTPUT RULES:
- Return ONLY a single valid JSON object. No other text before or after.
- Do NOT include any preamble, explanation, or markdown formatting.
- Do NOT wrap in code fences. Just raw JSON."""

METER_READING_PROMPT = """You are analyzing a photo of a utility meter (electricity, water or gas meter).
Extract the following fields and return them as a JSON object.
Use EXACTLY these keys:

{
  "meter_id": "the meter's ID/serial number if visible, otherwise 'UNKNOWN'",
  "meter_type": "electricity" | "water" | "gas" | "unknown",
  "reading_value": the number shown on the register, as a JSON number (digits only),
  "unit": "kWh" | "m3" | "unknown",
  "confidence": "high" | "medium" | "low",
  "confidence_score": a number between 0.0 (very unsure) and 1.0 (very sure)
}

Important:
- Determine the meter type from its design and labels
- Read the displayed number exactly
- The meter ID is usually printed on the meter body (top right or bottom)
- Base confidence on image quality, legibility and sharpness
- Electricity meters: the LAST displayed digit is ALWAYS after the decimal point
  (a register showing 317818 reads 31781.8 kWh)
- Gas meters: the LAST THREE digits (often marked red) are after the decimal point;
  they are liters, the digits before them are whole cubic meters
  (a register showing 01234567 reads 1234.567 m3)""" + _JSON_SUFFIX

EXPECTED_KEYS: frozenset[str] = frozenset({
    "meter_id", "meter_type", "reading_value", "unit",
    "confidence", "confidence_score",
})
