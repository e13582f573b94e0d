"""
Embeddings provider client.

Thin HTTP client for the OpenAI embeddings endpoint (or any service that
speaks the same /embeddings API).
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from embedding_cache.core.config import EmbeddingsConfig
from embedding_cache.core.exceptions import EmbeddingProviderError


logger = logging.getLogger(__name__)


class EmbeddingsClient:
    """
    HTTP client for an OpenAI-compatible embeddings API.

    Example:
        >>> client = EmbeddingsClient(EmbeddingsConfig.from_env())
        >>> vector = client.embed("Closing shall occur on or before June 1.")
        >>> len(vector)
        1536
    """

    provider = "openai"

    def __init__(self, config: EmbeddingsConfig, session: Optional[requests.Session] = None):
        """
        Initialize the client.

        Args:
            config: Provider settings
            session: Optional preconfigured session
        """
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.model = config.model
        self.timeout = config.timeout_seconds
        self.session = session or requests.Session()

        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self.session.headers.update(headers)

        logger.debug(f"Initialized EmbeddingsClient: base_url={self.base_url}, model={self.model}")

    def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Raises:
            EmbeddingProviderError: If the request fails
        """
        return self.embed_many([text])[0]

    def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Embed several texts in one request.

        Args:
            texts: Texts to embed

        Returns:
            One vector per text, in input order

        Raises:
            EmbeddingProviderError: If the request fails or the response is
                missing vectors
        """
        if not texts:
            return []

        payload = {
            "model": self.model,
            "input": list(texts),
            "encoding_format": "float",
        }
        result = self._make_request(f"{self.base_url}/embeddings", payload)
        return self._parse_vectors(result, expected=len(texts))

    def close(self) -> None:
        """Close the session."""
        if self.session:
            self.session.close()

    def _make_request(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            logger.debug(f"Making request to {url}")
            response = self.session.post(url, data=json.dumps(payload), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to connect to embeddings provider: {e}")
            raise EmbeddingProviderError(
                f"Failed to connect to {self.base_url}: {e}",
                provider=self.provider,
            )

        if response.status_code >= 400:
            body = response.text[:500]
            logger.error(f"HTTP error from embeddings provider: {response.status_code} - {body}")
            raise EmbeddingProviderError(
                f"Embeddings API error: {response.status_code} - {body}",
                provider=self.provider,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise EmbeddingProviderError(
                f"Invalid JSON response from embeddings provider: {e}",
                provider=self.provider,
            )

    def _parse_vectors(self, result: Dict[str, Any], expected: int) -> List[List[float]]:
        """Order vectors by their 'index' field and check the count."""
        try:
            items = sorted(result["data"], key=lambda item: item.get("index", 0))
            vectors = [[float(v) for v in item["embedding"]] for item in items]
        except (KeyError, TypeError, ValueError) as e:
            raise EmbeddingProviderError(
                f"Unexpected embeddings response shape: {e}",
                provider=self.provider,
            )

        if len(vectors) != expected:
            raise EmbeddingProviderError(
                f"Expected {expected} embeddings, got {len(vectors)}",
                provider=self.provider,
            )
        return vectors
