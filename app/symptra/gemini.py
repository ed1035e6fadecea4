"""Gemini REST client used by the diagnosis pipeline."""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any

import httpx

from symptra.config import Settings

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


class ModelTimeout(Exception):
    """The model did not answer within the configured deadline."""


class ModelResponseError(Exception):
    """The model answered, but not with a usable JSON object."""


class GeminiClient:
    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._transport = transport

    async def _call_model(self, model_name: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{GEMINI_BASE_URL}/{model_name}:generateContent"
        async with httpx.AsyncClient(
            timeout=self._settings.model_timeout_sec,
            transport=self._transport,
        ) as client:
            response = await client.post(url, params={"key": self._settings.gemini_api_key}, json=body)
            response.raise_for_status()
            return response.json()

    async def generate_json(
        self,
        model_name: str,
        prompt: str,
        *,
        temperature: float = 0.2,
    ) -> tuple[str, dict[str, Any]]:
        """Return the raw text and the parsed JSON object from one model call.

        The call is abandoned after ``model_timeout_sec``; cancelling the task
        closes the in-flight request, provider-side work may still continue.
        """
        if not self._settings.gemini_api_key:
            raise ModelResponseError("gemini_api_key_missing")

        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "responseMimeType": "application/json",
            },
        }
        try:
            data = await asyncio.wait_for(
                self._call_model(model_name, body),
                timeout=self._settings.model_timeout_sec,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise ModelTimeout(f"{model_name} exceeded {self._settings.model_timeout_sec:.0f}s") from exc

        text = self._candidate_text(data)
        if not text:
            raise ModelResponseError("empty model response")

        parsed = self._extract_json(text)
        if parsed is None:
            raise ModelResponseError("model response is not a JSON object")
        return text, parsed

    @staticmethod
    def _candidate_text(data: Any) -> str:
        if not isinstance(data, dict):
            return ""
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (((candidates[0] or {}).get("content") or {}).get("parts")) or []
        return "".join(str(p.get("text", "")) for p in parts if isinstance(p, dict)).strip()

    @staticmethod
    def _extract_json(text: str) -> dict[str, Any] | None:
        cleaned = text.strip()
        if cleaned.startswith("```"):
            cleaned = re.sub(r"^```[a-zA-Z]*\n?", "", cleaned)
            cleaned = re.sub(r"\n?```$", "", cleaned).strip()

        try:
            parsed = json.loads(cleaned)
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass

        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start != -1 and end != -1 and end > start:
            try:
                parsed = json.loads(cleaned[start : end + 1])
                if isinstance(parsed, dict):
                    return parsed
            except json.JSONDecodeError:
                return None
        return None
