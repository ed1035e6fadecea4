"""End-to-end diagnosis request orchestration.

validate -> cache lookup -> model selection -> prompt -> deadline-bounded
model call -> parse -> audit -> inconclusive check -> guardrails -> cache write.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from pydantic import ValidationError

from symptra.cache import DiagnosisCache, cache_key
from symptra.gemini import ModelTimeout
from symptra.identity import ANONYMOUS_UID
from symptra.prompts import build_diagnosis_prompt
from symptra.routing import select_model
from symptra.safety import apply_safety_guardrails
from symptra.schemas import AuditRecord, DiagnosisRequest, DiagnosisResponse
from symptra.storage import RecordStore
from symptra.utils import canonical_json, elapsed_ms, now_ms, sha256_hex, utc_now
from symptra.validation import VitalsCheck, validate_vitals

logger = logging.getLogger(__name__)

CACHE_HIT_MODEL = "cache"


class ModelClient(Protocol):
    async def generate_json(self, model_name: str, prompt: str) -> tuple[str, dict[str, Any]]: ...


class DiagnosisFailure(Exception):
    """A caller-visible failure carrying a code, a message and a suggestion."""

    def __init__(self, code: str, status_code: int, message: str, suggestion: str):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.message = message
        self.suggestion = suggestion

    def as_payload(self) -> dict[str, str]:
        return {"code": self.code, "error": self.message, "suggestion": self.suggestion}

    @classmethod
    def conflicting_vitals(cls, check: VitalsCheck) -> DiagnosisFailure:
        return cls(
            "CONFLICTING_VITALS",
            422,
            check.error or "The vitals provided are not physiologically plausible.",
            check.suggestion or "Please double-check your readings and try again.",
        )

    @classmethod
    def no_symptoms(cls) -> DiagnosisFailure:
        return cls(
            "INCONCLUSIVE_SYMPTOMS",
            400,
            "No symptoms were selected.",
            "Please select at least one symptom from the list or body map.",
        )

    @classmethod
    def inconclusive(cls) -> DiagnosisFailure:
        return cls(
            "INCONCLUSIVE_SYMPTOMS",
            422,
            "The symptoms provided are too vague for a reliable assessment.",
            "Try adding more specific symptoms or using the 'Additional Details' field "
            "to describe your condition in more detail.",
        )

    @classmethod
    def timeout(cls) -> DiagnosisFailure:
        return cls(
            "API_TIMEOUT",
            504,
            "The analysis is taking longer than expected.",
            "Our AI is currently busy. Please try again in a few moments.",
        )

    @classmethod
    def invalid_request(cls) -> DiagnosisFailure:
        return cls(
            "INVALID_REQUEST",
            422,
            "The request could not be read.",
            "Please check the symptoms, vitals and details you entered and try again.",
        )

    @classmethod
    def rate_limited(cls) -> DiagnosisFailure:
        return cls(
            "RATE_LIMITED",
            429,
            "Too many requests, please try again later.",
            "Wait a few minutes before submitting another request.",
        )

    @classmethod
    def server_error(cls) -> DiagnosisFailure:
        return cls(
            "SERVER_ERROR",
            500,
            "An unexpected error occurred during analysis.",
            "Please try again. If the problem persists, check your internet connection.",
        )


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return bool(value)


def input_hash(request: DiagnosisRequest) -> str:
    payload = {
        "symptoms": sorted(request.symptoms),
        "additionalInfo": request.additional_info,
        "vitals": request.vitals.model_dump(by_alias=True, exclude_none=True) if request.vitals else None,
        "demographics": (
            request.demographics.model_dump(by_alias=True, exclude_none=True) if request.demographics else None
        ),
    }
    return sha256_hex(canonical_json(payload))


class DiagnosisOrchestrator:
    def __init__(
        self,
        gemini: ModelClient,
        cache: DiagnosisCache,
        store: RecordStore,
        *,
        baseline_model: str,
        escalated_model: str,
        audit_cache_hits: bool = False,
    ):
        self._gemini = gemini
        self._cache = cache
        self._store = store
        self._baseline_model = baseline_model
        self._escalated_model = escalated_model
        self._audit_cache_hits = audit_cache_hits

    @property
    def cache(self) -> DiagnosisCache:
        return self._cache

    async def _write_audit(self, user_uid: str, model_name: str, request_hash: str, raw_text: str) -> None:
        record = AuditRecord(
            user_uid=user_uid,
            model_used=model_name,
            input_hash=request_hash,
            response_hash=sha256_hex(raw_text),
            timestamp=utc_now(),
        )
        try:
            await asyncio.to_thread(self._store.append_audit, record)
        except Exception:
            # The answer is still returned; the gap shows up in the logs.
            logger.exception("audit_write_failed user=%s model=%s", user_uid, model_name)

    async def run(self, request: DiagnosisRequest, *, user_uid: str = ANONYMOUS_UID) -> DiagnosisResponse:
        check = validate_vitals(request.vitals)
        if not check.valid:
            raise DiagnosisFailure.conflicting_vitals(check)

        if not request.symptoms:
            raise DiagnosisFailure.no_symptoms()

        key = cache_key(request.symptoms, request.vitals, request.demographics)
        cached = None if request.has_addendum else self._cache.get(key)
        if cached is not None:
            self._cache.record_hit()
            if self._audit_cache_hits:
                await self._write_audit(
                    user_uid,
                    CACHE_HIT_MODEL,
                    input_hash(request),
                    canonical_json(cached.model_dump(mode="json", by_alias=True)),
                )
            return cached

        self._cache.record_miss()
        model_name = select_model(
            request.symptoms,
            request.additional_info,
            request.demographics,
            baseline_model=self._baseline_model,
            escalated_model=self._escalated_model,
        )
        prompt = build_diagnosis_prompt(request)
        started = now_ms()

        try:
            raw_text, payload = await self._gemini.generate_json(model_name, prompt)
        except ModelTimeout as exc:
            logger.warning("gemini_timeout model=%s: %s", model_name, exc)
            raise DiagnosisFailure.timeout() from exc
        except Exception as exc:
            logger.error("gemini_technical_error model=%s: %s: %s", model_name, type(exc).__name__, exc)
            raise DiagnosisFailure.server_error() from exc

        inconclusive = _flag(payload.get("inconclusive"))
        diagnosis: DiagnosisResponse | None = None
        if not inconclusive:
            try:
                diagnosis = DiagnosisResponse.model_validate(payload)
            except ValidationError as exc:
                logger.error("gemini_malformed_response model=%s: %s", model_name, exc)
                raise DiagnosisFailure.server_error() from exc

        await self._write_audit(user_uid, model_name, input_hash(request), raw_text)

        if inconclusive or diagnosis is None:
            logger.info("diagnosis_inconclusive model=%s latency_ms=%d", model_name, elapsed_ms(started))
            raise DiagnosisFailure.inconclusive()

        diagnosis, removed = apply_safety_guardrails(diagnosis)
        for note in removed:
            logger.warning("safety_guardrail_removed model=%s %s", model_name, note)

        if not request.has_addendum:
            self._cache.set(key, diagnosis)

        logger.info(
            "diagnosis_completed model=%s conditions=%d latency_ms=%d",
            model_name,
            len(diagnosis.possible_conditions),
            elapsed_ms(started),
        )
        return diagnosis
