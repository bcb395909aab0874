"""Remote embedding client for OpenAI-compatible ``/embeddings`` endpoints.

Failures raise so that the vector queue can retry and cool down; the
client itself keeps only the last observed rate-limit state.
"""

from __future__ import annotations

import httpx
import numpy as np
from loguru import logger

from ..config import RemoteEmbeddingConfig
from ..exceptions import QuotaExceededError, RemoteEmbeddingError
from .vectors import l2_normalize

RATE_LIMIT_STATUS_CODES = (403, 429)


class RemoteEmbeddingClient:
    """Batched embedding calls against a hosted model (bge-m3 by default)."""

    def __init__(
        self,
        config: RemoteEmbeddingConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            config: Remote embedding configuration
            transport: Optional httpx transport, used to stub the network
        """
        self._config = config or RemoteEmbeddingConfig()
        self._transport = transport
        self.is_rate_limited = False

    @property
    def dimension(self) -> int:
        return self._config.dimension

    @property
    def has_api_key(self) -> bool:
        return bool(self._config.api_key and self._config.api_key.strip())

    async def embed(self, text: str) -> np.ndarray:
        results = await self.embed_batch([text])
        return results[0]

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Embed texts with one HTTP request.

        Args:
            texts: Texts to embed

        Returns:
            Unit-length vectors in input order

        Raises:
            QuotaExceededError: The API answered 403 or 429
            RemoteEmbeddingError: Missing key, transport error, bad payload
        """
        if not texts:
            return []

        if not self.has_api_key:
            logger.warning("Remote embedding: no API key configured")
            raise RemoteEmbeddingError("No API key configured for remote embedding")

        body = {
            "model": self._config.model,
            "input": list(texts),
            "encoding_format": "float",
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._config.api_key}",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._config.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(
                    self._config.endpoint, json=body, headers=headers
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in RATE_LIMIT_STATUS_CODES:
                self.is_rate_limited = True
                logger.warning(f"Remote embedding rate limited: {status}")
                raise QuotaExceededError(
                    f"Remote embedding quota exceeded ({status})", status_code=status
                ) from e
            logger.error(f"Remote embedding HTTP error: {status}")
            raise RemoteEmbeddingError(
                f"Remote embedding HTTP error ({status})", status_code=status
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Remote embedding transport error: {e}")
            raise RemoteEmbeddingError(f"Remote embedding transport error: {e}") from e
        except ValueError as e:
            raise RemoteEmbeddingError(f"Remote embedding returned invalid JSON: {e}") from e

        self.is_rate_limited = False

        data = payload.get("data") if isinstance(payload, dict) else None
        if not data:
            logger.warning("Remote embedding: empty response")
            raise RemoteEmbeddingError("Remote embedding returned no data")
        if len(data) != len(texts):
            raise RemoteEmbeddingError(
                f"Remote embedding returned {len(data)} vectors for {len(texts)} inputs"
            )

        ordered = sorted(data, key=lambda d: d.get("index", 0))
        return [l2_normalize(d.get("embedding") or []) for d in ordered]
