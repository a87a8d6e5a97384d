"""
photoquest.services.classifier_client — Remote Moderation Classifier
=====================================================================

Thin httpx client for the remote image classifier::

    POST {base_url}/moderate   {"imageUrl": "<artifact url>"}
    → {"isAppropriate": bool, "confidence": 0..1,
       "categories": {"adult": "VERY_UNLIKELY", "violence": ..., "racy": ...},
       "reason": str?, "labels": [str]?}

Every failure (timeout after one retry, network error, non-2xx status,
malformed body) raises :class:`~photoquest.errors.ModerationUnavailableError`
so the pipeline can fall back to local heuristics.
"""

from __future__ import annotations

import logging

import httpx

from photoquest.engine.moderation import ClassifierResult, parse_classifier_payload
from photoquest.errors import ModerationUnavailableError
from photoquest.services.retry import with_retry

logger = logging.getLogger(__name__)


class ClassifierClient:
    """Client for the remote classifier.

    The httpx client is created lazily and must be closed on shutdown
    (``await client.aclose()`` or ``async with ClassifierClient(...)``).
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> ClassifierClient:
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
            logger.debug("Created httpx client for classifier at %s", self.base_url)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def moderate(self, artifact_url: str) -> ClassifierResult:
        client = self._ensure_client()
        try:
            response = await with_retry(
                lambda: client.post("/moderate", json={"imageUrl": artifact_url}),
                timeout=None,  # httpx enforces self.timeout per request
                transient=(httpx.TimeoutException, httpx.NetworkError),
                label="classifier",
            )
        except httpx.HTTPError as exc:
            logger.error("Classifier request failed: %s", exc)
            raise ModerationUnavailableError(f"Classifier unreachable: {exc}") from exc

        if response.status_code != 200:
            logger.error("Classifier API error %d: %s", response.status_code, response.text[:200])
            raise ModerationUnavailableError(
                f"Classifier returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return parse_classifier_payload(response.json())
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError too
            logger.error("Classifier returned an unusable body: %s", exc)
            raise ModerationUnavailableError(f"Malformed classifier response: {exc}") from exc
