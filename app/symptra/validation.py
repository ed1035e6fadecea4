"""Physiological plausibility checks for submitted vitals.

Unparseable or absent readings count as not provided and never fail: free
text and locale variants should not block a request.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from symptra.schemas import Vitals

MIN_TEMPERATURE_C = 30.0
MAX_TEMPERATURE_C = 45.0
MAX_SYSTOLIC_MMHG = 300
MIN_DIASTOLIC_MMHG = 20

_LEADING_DECIMAL = re.compile(r"^\s*([+-]?(?:\d+(?:\.\d*)?|\.\d+))")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class VitalsCheck:
    valid: bool
    error: str | None = None
    suggestion: str | None = None


VALID = VitalsCheck(valid=True)


def _leading_number(text: str | None) -> float | None:
    if not text:
        return None
    match = _LEADING_DECIMAL.match(text)
    if not match:
        return None
    return float(match.group(1))


def _leading_int(text: str) -> int | None:
    match = _LEADING_INT.match(text)
    if not match:
        return None
    return int(match.group(1))


def parse_blood_pressure(text: str | None) -> tuple[int, int] | None:
    if not text:
        return None
    parts = text.split("/")
    if len(parts) != 2:
        return None
    systolic = _leading_int(parts[0])
    diastolic = _leading_int(parts[1])
    if systolic is None or diastolic is None:
        return None
    return systolic, diastolic


def validate_vitals(vitals: Vitals | None) -> VitalsCheck:
    if vitals is None:
        return VALID

    temperature = _leading_number(vitals.temperature)
    if temperature is not None and not (MIN_TEMPERATURE_C <= temperature <= MAX_TEMPERATURE_C):
        return VitalsCheck(
            valid=False,
            error="The temperature provided is outside of physiological limits.",
            suggestion="Please double-check your thermometer reading and try again.",
        )

    pressure = parse_blood_pressure(vitals.blood_pressure)
    if pressure is not None:
        systolic, diastolic = pressure
        if systolic <= diastolic or systolic > MAX_SYSTOLIC_MMHG or diastolic < MIN_DIASTOLIC_MMHG:
            return VitalsCheck(
                valid=False,
                error="The blood pressure reading appears to be invalid.",
                suggestion=(
                    "Ensure systolic (top number) is higher than diastolic (bottom number) and re-enter."
                ),
            )

    return VALID
