import asyncio
import json

import httpx
import pytest

from symptra.config import Settings
from symptra.gemini import GeminiClient, ModelResponseError, ModelTimeout


def _settings(**overrides) -> Settings:
    values = {"gemini_api_key": "test-key", "model_timeout_sec": 25.0}
    values.update(overrides)
    return Settings(**values)


def _gemini_body(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def test_generate_json_posts_structured_output_request():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_gemini_body('{"summary": "Likely a cold.", "inconclusive": false}'))

    client = GeminiClient(_settings(), transport=httpx.MockTransport(handler))
    raw, parsed = asyncio.run(client.generate_json("gemini-3-flash-preview", "prompt text"))

    assert "gemini-3-flash-preview:generateContent" in seen["url"]
    assert "key=test-key" in seen["url"]
    assert seen["body"]["generationConfig"]["responseMimeType"] == "application/json"
    assert seen["body"]["contents"][0]["parts"][0]["text"] == "prompt text"
    assert parsed["summary"] == "Likely a cold."
    assert raw.startswith("{")


def test_generate_json_accepts_fenced_json():
    text = '```json\n{"summary": "Fenced", "possibleConditions": []}\n```'
    client = GeminiClient(
        _settings(),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=_gemini_body(text))),
    )

    raw, parsed = asyncio.run(client.generate_json("m", "p"))

    assert parsed == {"summary": "Fenced", "possibleConditions": []}
    assert raw == text


@pytest.mark.parametrize(
    "body",
    [
        {"candidates": []},
        _gemini_body(""),
        _gemini_body("I cannot help with that."),
        _gemini_body('["not", "an", "object"]'),
        _gemini_body('{"summary": "truncated"'),
    ],
)
def test_unusable_payloads_raise_response_error(body):
    client = GeminiClient(
        _settings(),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=body)),
    )

    with pytest.raises(ModelResponseError):
        asyncio.run(client.generate_json("m", "p"))


def test_provider_http_error_propagates():
    client = GeminiClient(
        _settings(),
        transport=httpx.MockTransport(lambda request: httpx.Response(503, json={"error": "busy"})),
    )

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(client.generate_json("m", "p"))


def test_missing_api_key_is_a_response_error():
    client = GeminiClient(_settings(gemini_api_key=None))

    with pytest.raises(ModelResponseError):
        asyncio.run(client.generate_json("m", "p"))


def test_deadline_raises_model_timeout():
    class SlowClient(GeminiClient):
        async def _call_model(self, model_name, body):
            await asyncio.sleep(5)
            return _gemini_body("{}")

    client = SlowClient(_settings(model_timeout_sec=0.05))

    with pytest.raises(ModelTimeout):
        asyncio.run(client.generate_json("m", "p"))
