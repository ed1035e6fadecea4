"""FastAPI application factory for the Symptra diagnosis service."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from symptra.cache import DiagnosisCache
from symptra.config import Settings, get_settings
from symptra.gemini import GeminiClient
from symptra.identity import (
    ANONYMOUS_UID,
    FirebaseIdentityVerifier,
    Identity,
    IdentityVerifier,
    InvalidToken,
    bearer_token,
)
from symptra.orchestration import DiagnosisFailure, DiagnosisOrchestrator
from symptra.schemas import DiagnosisRequest, HistoryCreate, HistoryEntry, overall_urgency
from symptra.storage import RecordStore
from symptra.utils import utc_now
from symptra.wearables import GoogleFitClient, WearableUnavailable

logger = logging.getLogger(__name__)

AUDIT_LOG_LIMIT = 100
DIAGNOSE_PATH = "/api/diagnose"


def create_app(
    settings: Settings | None = None,
    *,
    store: RecordStore | None = None,
    gemini: Any = None,
    cache: DiagnosisCache | None = None,
    verifier: IdentityVerifier | None = None,
    wearables: GoogleFitClient | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    store = store or RecordStore(settings.db_path)
    gemini = gemini or GeminiClient(settings)
    cache = cache or DiagnosisCache(settings.cache_ttl_sec, settings.cache_max_entries)
    verifier = verifier or FirebaseIdentityVerifier(settings)
    wearables = wearables or GoogleFitClient(settings)
    orchestrator = DiagnosisOrchestrator(
        gemini=gemini,
        cache=cache,
        store=store,
        baseline_model=settings.baseline_model,
        escalated_model=settings.escalated_model,
        audit_cache_hits=settings.audit_cache_hits,
    )

    # One shared per-IP budget across the API; /health is exempt.
    limiter = Limiter(
        key_func=get_remote_address,
        application_limits=[settings.rate_limit],
        enabled=settings.rate_limit_enabled,
    )

    api = FastAPI(title="Symptra API", version="1.0.0")
    api.add_middleware(SlowAPIMiddleware)
    api.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )
    api.state.settings = settings
    api.state.store = store
    api.state.orchestrator = orchestrator
    api.state.limiter = limiter

    @api.exception_handler(DiagnosisFailure)
    async def diagnosis_failure_handler(_: Request, exc: DiagnosisFailure) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.as_payload())

    @api.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        if request.url.path != DIAGNOSE_PATH:
            return await request_validation_exception_handler(request, exc)
        logger.info("diagnose_request_invalid: %s", exc.errors())
        failure = DiagnosisFailure.invalid_request()
        return JSONResponse(status_code=failure.status_code, content=failure.as_payload())

    # Called synchronously from the rate-limit middleware.
    def rate_limited_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        logger.warning("rate_limited client=%s limit=%s", get_remote_address(request), exc.detail)
        failure = DiagnosisFailure.rate_limited()
        return JSONResponse(status_code=failure.status_code, content=failure.as_payload())

    api.add_exception_handler(RateLimitExceeded, rate_limited_handler)

    async def optional_identity(authorization: str | None = Header(default=None)) -> Identity | None:
        token = bearer_token(authorization)
        if token is None:
            return None
        try:
            return await verifier.verify(token)
        except InvalidToken as exc:
            # Unverifiable credentials fall back to anonymous on optional routes.
            logger.info("optional_auth_ignored: %s", exc)
            return None

    async def require_identity(authorization: str | None = Header(default=None)) -> Identity:
        token = bearer_token(authorization)
        if token is None:
            raise HTTPException(status_code=401, detail="Unauthorized: No token provided")
        try:
            return await verifier.verify(token)
        except InvalidToken as exc:
            logger.info("auth_rejected: %s", exc)
            raise HTTPException(status_code=401, detail="Unauthorized: Invalid token") from exc

    async def require_admin(identity: Identity = Depends(require_identity)) -> Identity:
        if not identity.email or identity.email not in settings.admin_emails:
            raise HTTPException(status_code=403, detail="Forbidden: Admin access required")
        return identity

    @api.get("/health")
    @limiter.exempt
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "service": settings.app_name,
            "timestamp": utc_now().isoformat(),
            "baseline_model": settings.baseline_model,
            "escalated_model": settings.escalated_model,
            "gemini_key_configured": bool(settings.gemini_api_key),
            "identity_configured": bool(settings.firebase_api_key),
        }

    @api.post("/api/diagnose")
    async def diagnose(
        request: DiagnosisRequest,
        identity: Identity | None = Depends(optional_identity),
    ) -> JSONResponse:
        user_uid = identity.uid if identity else ANONYMOUS_UID
        result = await orchestrator.run(request, user_uid=user_uid)
        content = result.model_dump(mode="json", by_alias=True)
        content["overallUrgency"] = overall_urgency(result.possible_conditions)
        return JSONResponse(content=content)

    @api.post("/api/history")
    def save_history(entry: HistoryCreate, identity: Identity = Depends(require_identity)) -> dict[str, int]:
        try:
            return {"id": store.add_history(identity.uid, entry)}
        except Exception as exc:
            logger.exception("history_write_failed user=%s", identity.uid)
            raise HTTPException(status_code=500, detail="Failed to save history") from exc

    @api.get("/api/history")
    def list_history(identity: Identity = Depends(require_identity)) -> list[dict[str, Any]]:
        try:
            rows = store.list_history(identity.uid)
        except Exception as exc:
            logger.exception("history_read_failed user=%s", identity.uid)
            raise HTTPException(status_code=500, detail="Failed to fetch history") from exc
        return [HistoryEntry(**row).model_dump(mode="json", by_alias=True) for row in rows]

    @api.delete("/api/history/{entry_id}")
    def delete_history(entry_id: int, identity: Identity = Depends(require_identity)) -> dict[str, bool]:
        try:
            deleted = store.delete_history(identity.uid, entry_id)
        except Exception as exc:
            logger.exception("history_delete_failed user=%s", identity.uid)
            raise HTTPException(status_code=500, detail="Failed to delete") from exc
        if not deleted:
            raise HTTPException(status_code=404, detail="Not found or unauthorized")
        return {"success": True}

    @api.get("/api/wearable/status")
    def wearable_status(identity: Identity = Depends(require_identity)) -> dict[str, bool]:
        return {"connected": store.get_token(identity.uid) is not None}

    @api.post("/api/wearable/revoke")
    def wearable_revoke(identity: Identity = Depends(require_identity)) -> dict[str, bool]:
        try:
            store.delete_token(identity.uid)
        except Exception as exc:
            logger.exception("wearable_revoke_failed user=%s", identity.uid)
            raise HTTPException(status_code=500, detail="Failed to revoke permissions") from exc
        return {"success": True}

    @api.get("/api/wearable/data")
    async def wearable_data(identity: Identity = Depends(require_identity)) -> JSONResponse:
        token = store.get_token(identity.uid)
        if token is None:
            raise HTTPException(status_code=404, detail="Not connected to Google Fit")
        try:
            fresh = await wearables.refresh_if_expired(token)
            if fresh is not token:
                store.upsert_token(fresh)
            summary = await wearables.weekly_summary(fresh)
        except (WearableUnavailable, httpx.HTTPError) as exc:
            logger.warning("wearable_fetch_failed user=%s: %s: %s", identity.uid, type(exc).__name__, exc)
            raise HTTPException(status_code=502, detail="Failed to fetch wearable data") from exc
        return JSONResponse(content=summary.model_dump(mode="json", by_alias=True))

    @api.get("/api/admin/audit-logs")
    def audit_logs(_: Identity = Depends(require_admin)) -> list[dict[str, Any]]:
        return [record.model_dump(mode="json", by_alias=True) for record in store.list_audit(AUDIT_LOG_LIMIT)]

    @api.get("/api/admin/stats")
    def admin_stats(_: Identity = Depends(require_admin)) -> dict[str, Any]:
        stats = store.audit_stats()
        return {
            "totalRequests": stats["total_requests"],
            "uniqueUsers": stats["unique_users"],
            "modelUsage": stats["model_usage"],
            "anomalies": stats["anomalies"],
            "cache": orchestrator.cache.stats(),
        }

    return api
