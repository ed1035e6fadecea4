"""Pydantic schemas for Symptra endpoints and internal contracts.

Wire payloads use the camelCase keys the browser client sends; snake_case
field names are accepted as well.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from symptra.utils import finite_or_none


Urgency = Literal["Routine", "Urgent", "Emergency"]

URGENCY_ORDER = {"Routine": 1, "Urgent": 2, "Emergency": 3}

DISCLAIMER = (
    "This assessment is AI-generated for informational purposes only and is not a medical diagnosis. "
    "Always consult a qualified healthcare professional. If you think you may have a medical emergency, "
    "call your local emergency number immediately."
)


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _text_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize_urgency(value: Any) -> str:
    token = str(value or "").strip().lower()
    mapping = {
        "routine": "Routine",
        "low": "Routine",
        "non-urgent": "Routine",
        "urgent": "Urgent",
        "moderate": "Urgent",
        "emergency": "Emergency",
        "emergent": "Emergency",
        "critical": "Emergency",
        "high": "Emergency",
    }
    # Unknown labels map to Urgent, which never carries OTC advice.
    return mapping.get(token, "Urgent")


def _string_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(x).strip() for x in value if x is not None and str(x).strip()]
    text = str(value).strip()
    return [text] if text else []


class Vitals(WireModel):
    temperature: str | None = None
    blood_pressure: str | None = None
    heart_rate: str | None = None
    sp_o2: str | None = Field(default=None, validation_alias=AliasChoices("spO2", "spo2", "SpO2", "sp_o2"))

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return _text_or_none(value)


class Demographics(WireModel):
    age: str | None = None
    gender: str | None = None
    pre_existing_conditions: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str | None:
        return _text_or_none(value)


class WearableSummary(WireModel):
    """Seven-day wearable rollup. Missing aggregates stay None, never NaN."""

    avg_steps: float | None = None
    avg_heart_rate: float | None = None
    sleep_hours: float | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _finite(cls, value: Any) -> float | None:
        return finite_or_none(value)

    @property
    def is_empty(self) -> bool:
        return self.avg_steps is None and self.avg_heart_rate is None and self.sleep_hours is None


class DiagnosisRequest(WireModel):
    symptoms: list[str] = Field(default_factory=list)
    additional_info: str | None = Field(
        default=None,
        validation_alias=AliasChoices("additionalInfo", "additional_info", "addendum"),
    )
    vitals: Vitals | None = None
    demographics: Demographics | None = None
    wearable_data: WearableSummary | None = None

    @field_validator("symptoms", mode="before")
    @classmethod
    def _symptom_set(cls, value: Any) -> list[str]:
        # Set semantics: duplicates collapse, first spelling wins for display.
        seen: set[str] = set()
        out: list[str] = []
        for item in _string_list(value):
            if item in seen:
                continue
            seen.add(item)
            out.append(item)
        return out

    @field_validator("additional_info", mode="before")
    @classmethod
    def _addendum(cls, value: Any) -> str | None:
        return _text_or_none(value)

    @property
    def has_addendum(self) -> bool:
        return bool(self.additional_info)


class PharmacyLink(WireModel):
    name: str
    url: str

    @field_validator("name", "url", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return str(value).strip()


class PossibleCondition(WireModel):
    condition: str
    probability: str = "Unknown"
    description: str | None = None
    urgency: Urgency = "Urgent"
    probable_specialty: str = Field(
        default="General Practitioner",
        validation_alias=AliasChoices("probableSpecialty", "probable_specialty", "specialty"),
    )
    common_symptoms: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    otc_suggestions: list[str] = Field(default_factory=list)
    pharmacy_links: list[PharmacyLink] = Field(default_factory=list)

    @field_validator("probability", mode="before")
    @classmethod
    def _probability_text(cls, value: Any) -> str:
        return _text_or_none(value) or "Unknown"

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, value: Any) -> str | None:
        return _text_or_none(value)

    @field_validator("probable_specialty", mode="before")
    @classmethod
    def _specialty(cls, value: Any) -> str:
        return _text_or_none(value) or "General Practitioner"

    @field_validator("urgency", mode="before")
    @classmethod
    def _urgency(cls, value: Any) -> str:
        return _normalize_urgency(value)

    @field_validator("common_symptoms", "next_steps", "otc_suggestions", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> list[str]:
        return _string_list(value)

    @field_validator("pharmacy_links", mode="before")
    @classmethod
    def _links(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        return [
            item
            for item in value
            if isinstance(item, PharmacyLink) or (isinstance(item, dict) and item.get("name") and item.get("url"))
        ]


class DiagnosisResponse(WireModel):
    summary: str = ""
    inconclusive: bool = False
    possible_conditions: list[PossibleCondition] = Field(default_factory=list)
    disclaimer: str = DISCLAIMER

    @field_validator("summary", mode="before")
    @classmethod
    def _summary(cls, value: Any) -> str:
        return _text_or_none(value) or ""

    @field_validator("inconclusive", mode="before")
    @classmethod
    def _inconclusive(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in {"true", "yes", "1"}
        return bool(value)

    @field_validator("possible_conditions", mode="before")
    @classmethod
    def _conditions(cls, value: Any) -> list[Any]:
        return value if isinstance(value, list) else []

    @field_validator("disclaimer", mode="before")
    @classmethod
    def _disclaimer(cls, value: Any) -> str:
        return _text_or_none(value) or DISCLAIMER


def overall_urgency(conditions: list[PossibleCondition]) -> str:
    level = "Routine"
    for item in conditions:
        if URGENCY_ORDER[item.urgency] > URGENCY_ORDER[level]:
            level = item.urgency
    return level


class HistoryCreate(WireModel):
    symptoms: list[str] = Field(default_factory=list)
    vitals: dict[str, Any] | None = None
    demographics: dict[str, Any] | None = None
    summary: str = ""
    conditions: list[dict[str, Any]] = Field(default_factory=list)
    urgency: str | None = None
    consent_timestamp: str | None = None


class HistoryEntry(HistoryCreate):
    id: int
    user_uid: str
    timestamp: str


class AuditRecord(WireModel):
    id: int | None = None
    user_uid: str
    model_used: str
    input_hash: str
    response_hash: str
    timestamp: datetime | str | None = None


class TokenRecord(WireModel):
    user_uid: str
    provider: str = "google"
    access_token: str
    refresh_token: str | None = None
    expiry_date: int | None = None
