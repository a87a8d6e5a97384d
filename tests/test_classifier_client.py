"""
tests/test_classifier_client.py — Remote Classifier Client Tests
=================================================================
Uses ``httpx.MockTransport`` so no network is touched.
"""

from __future__ import annotations

import json

import httpx
import pytest

from conftest import run
from photoquest.engine.moderation import Likelihood
from photoquest.errors import ModerationUnavailableError
from photoquest.services.classifier_client import ClassifierClient

GOOD_BODY = {
    "isAppropriate": True,
    "confidence": 0.97,
    "categories": {"adult": "VERY_UNLIKELY", "violence": "VERY_UNLIKELY", "racy": "UNLIKELY"},
    "labels": ["Bison", "Pasture"],
}


def _client(handler) -> ClassifierClient:
    return ClassifierClient(
        "https://classifier.test/v1",
        api_key="k-123",
        transport=httpx.MockTransport(handler),
    )


async def _moderate(client: ClassifierClient, url: str = "/api/artifacts/x.jpg"):
    async with client:
        return await client.moderate(url)


class TestModerate:
    def test_parses_response(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=GOOD_BODY)

        result = run(_moderate(_client(handler)))

        assert result.is_appropriate
        assert result.categories["racy"] is Likelihood.UNLIKELY
        assert result.labels == ("Bison", "Pasture")
        assert seen["url"] == "https://classifier.test/v1/moderate"
        assert seen["auth"] == "Bearer k-123"
        assert seen["body"] == {"imageUrl": "/api/artifacts/x.jpg"}

    def test_server_error(self):
        client = _client(lambda request: httpx.Response(500, text="upstream exploded"))
        with pytest.raises(ModerationUnavailableError) as exc_info:
            run(_moderate(client))
        assert exc_info.value.details["status_code"] == 500

    def test_malformed_json(self):
        client = _client(lambda request: httpx.Response(200, text="<html>nope</html>"))
        with pytest.raises(ModerationUnavailableError):
            run(_moderate(client))

    def test_missing_verdict(self):
        client = _client(lambda request: httpx.Response(200, json={"confidence": 0.4}))
        with pytest.raises(ModerationUnavailableError):
            run(_moderate(client))

    def test_network_error_retried_once_then_unavailable(self):
        calls = []

        def handler(request):
            calls.append(1)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ModerationUnavailableError):
            run(_moderate(_client(handler)))
        assert len(calls) == 2

    def test_recovers_on_retry(self):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) == 1:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json=GOOD_BODY)

        assert run(_moderate(_client(handler))).is_appropriate
        assert len(calls) == 2

    def test_close_is_idempotent(self):
        client = _client(lambda request: httpx.Response(200, json=GOOD_BODY))
        run(_moderate(client))
        run(client.aclose())
