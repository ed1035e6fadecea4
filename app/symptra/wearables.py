"""Google Fit 7-day rollups used to enrich diagnosis prompts."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from symptra.config import Settings
from symptra.schemas import TokenRecord, WearableSummary

logger = logging.getLogger(__name__)

FITNESS_AGGREGATE_URL = "https://www.googleapis.com/fitness/v1/users/me/dataset:aggregate"
TOKEN_URL = "https://oauth2.googleapis.com/token"
# Refresh slightly before the recorded expiry.
EXPIRY_SKEW_MS = 60 * 1000
WINDOW_DAYS = 7
DAY_MS = 24 * 60 * 60 * 1000

STEP_COUNT = "com.google.step_count.delta"
HEART_RATE = "com.google.heart_rate.summary"
SLEEP_SEGMENT = "com.google.sleep.segment"

# Sleep stage codes counted as asleep (1 = awake, 3 = out of bed).
_ASLEEP_STAGES = {2, 4, 5, 6}


class WearableUnavailable(Exception):
    """The wearable connection was revoked or the provider refused the request."""


def _points(bucket: dict[str, Any]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for dataset in bucket.get("dataset") or []:
        out.extend(p for p in (dataset or {}).get("point") or [] if isinstance(p, dict))
    return out


def _first_value(point: dict[str, Any], key: str) -> float | None:
    values = point.get("value") or []
    if not values or not isinstance(values[0], dict) or key not in values[0]:
        return None
    return float(values[0][key])


def _daily_steps(bucket: dict[str, Any]) -> float | None:
    values = [v for v in (_first_value(p, "intVal") for p in _points(bucket)) if v is not None]
    return sum(values) if values else None


def _daily_heart_rate(bucket: dict[str, Any]) -> float | None:
    # heart_rate.summary carries [average, max, min]; the first value is the average.
    values = [v for v in (_first_value(p, "fpVal") for p in _points(bucket)) if v is not None]
    return sum(values) / len(values) if values else None


def _daily_sleep_hours(bucket: dict[str, Any]) -> float | None:
    asleep_ns = 0
    seen = False
    for point in _points(bucket):
        stage = _first_value(point, "intVal")
        if stage is None:
            continue
        seen = True
        if int(stage) in _ASLEEP_STAGES:
            asleep_ns += int(point.get("endTimeNanos", 0)) - int(point.get("startTimeNanos", 0))
    if not seen:
        return None
    return max(asleep_ns, 0) / 3.6e12


def _mean_over_reporting_days(buckets: list[dict[str, Any]], daily) -> float | None:
    values = [v for v in (daily(b) for b in buckets) if v is not None]
    if not values:
        return None
    return sum(values) / len(values)


def summarize_buckets(
    steps: list[dict[str, Any]],
    heart_rate: list[dict[str, Any]],
    sleep: list[dict[str, Any]],
) -> WearableSummary:
    """Average each metric over the days that actually report data.

    A metric with no data buckets is left as None instead of dividing by the
    nominal window length.
    """
    return WearableSummary(
        avg_steps=_mean_over_reporting_days(steps, _daily_steps),
        avg_heart_rate=_mean_over_reporting_days(heart_rate, _daily_heart_rate),
        sleep_hours=_mean_over_reporting_days(sleep, _daily_sleep_hours),
    )


class GoogleFitClient:
    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport

    async def _aggregate(
        self,
        client: httpx.AsyncClient,
        data_type: str,
        start_ms: int,
        end_ms: int,
    ) -> list[dict[str, Any]]:
        response = await client.post(
            FITNESS_AGGREGATE_URL,
            json={
                "aggregateBy": [{"dataTypeName": data_type}],
                "bucketByTime": {"durationMillis": str(DAY_MS)},
                "startTimeMillis": str(start_ms),
                "endTimeMillis": str(end_ms),
            },
        )
        if response.status_code in {401, 403}:
            raise WearableUnavailable(f"{data_type} refused (status={response.status_code})")
        response.raise_for_status()
        return list(response.json().get("bucket") or [])

    async def refresh_if_expired(self, token: TokenRecord, *, now_ms: int | None = None) -> TokenRecord:
        """Return ``token`` unchanged while it is valid, else a refreshed copy.

        Records without an expiry or a refresh token are returned as is and
        left for the provider to accept or refuse.
        """
        now = now_ms if now_ms is not None else int(time.time() * 1000)
        if token.expiry_date is None or not token.refresh_token:
            return token
        if token.expiry_date - EXPIRY_SKEW_MS > now:
            return token
        if not self._settings.google_client_id or not self._settings.google_client_secret:
            raise WearableUnavailable("access token expired and no OAuth client is configured")

        async with httpx.AsyncClient(
            timeout=self._settings.request_timeout_sec,
            transport=self._transport,
        ) as client:
            response = await client.post(
                TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": token.refresh_token,
                    "client_id": self._settings.google_client_id,
                    "client_secret": self._settings.google_client_secret,
                },
            )
        if response.status_code in {400, 401}:
            raise WearableUnavailable(f"token refresh refused (status={response.status_code})")
        response.raise_for_status()

        body = response.json()
        access_token = body.get("access_token")
        if not access_token:
            raise WearableUnavailable("token refresh returned no access token")
        expires_in = body.get("expires_in")
        logger.info("wearable_token_refreshed user=%s", token.user_uid)
        return token.model_copy(
            update={
                "access_token": str(access_token),
                "refresh_token": body.get("refresh_token") or token.refresh_token,
                "expiry_date": now + int(expires_in) * 1000 if expires_in is not None else None,
            }
        )

    async def weekly_summary(self, token: TokenRecord, *, now_ms: int | None = None) -> WearableSummary:
        end_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        start_ms = end_ms - WINDOW_DAYS * DAY_MS
        async with httpx.AsyncClient(
            timeout=self._settings.request_timeout_sec,
            transport=self._transport,
            headers={"Authorization": f"Bearer {token.access_token}"},
        ) as client:
            steps, heart_rate, sleep = await asyncio.gather(
                self._aggregate(client, STEP_COUNT, start_ms, end_ms),
                self._aggregate(client, HEART_RATE, start_ms, end_ms),
                self._aggregate(client, SLEEP_SEGMENT, start_ms, end_ms),
            )
        return summarize_buckets(steps, heart_rate, sleep)
