"""Model tier selection."""

from __future__ import annotations

from symptra.schemas import Demographics

ADDENDUM_ESCALATION_CHARS = 200
CONDITIONS_ESCALATION_CHARS = 50
SYMPTOM_ESCALATION_COUNT = 5


def is_complex_request(
    symptoms: list[str],
    additional_info: str | None = None,
    demographics: Demographics | None = None,
) -> bool:
    conditions = demographics.pre_existing_conditions if demographics else None
    return (
        len(additional_info or "") > ADDENDUM_ESCALATION_CHARS
        or len(conditions or "") > CONDITIONS_ESCALATION_CHARS
        or len(set(symptoms)) > SYMPTOM_ESCALATION_COUNT
    )


def select_model(
    symptoms: list[str],
    additional_info: str | None = None,
    demographics: Demographics | None = None,
    *,
    baseline_model: str,
    escalated_model: str,
) -> str:
    if is_complex_request(symptoms, additional_info, demographics):
        return escalated_model
    return baseline_model
