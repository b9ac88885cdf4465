"""OpenAI embeddings service used by the vector index."""

import numpy as np
from openai import OpenAI, OpenAIError

from .config import config
from .errors import VectorIndexUnavailableError

logger = config.get_logger(__name__)


class EmbeddingService:
    """Turns text into float32 vectors through the OpenAI embeddings API."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        batch_size: int = 100,
    ) -> None:
        """Initialize the EmbeddingService.

        Args:
            api_key: OpenAI API key. If None,
                reads from OPENAI_API_KEY environment variable.
            model: Embedding model name. If None, uses config.EMBEDDING_MODEL.
            batch_size: Number of texts sent per API request.
        """
        default_headers = config.get_api_headers()
        self.client = OpenAI(
            api_key=api_key or config.get_openai_api_key(),
            base_url=config.OPENAI_BASE_URL,
            default_headers=default_headers or None,
        )
        self.model = model or config.EMBEDDING_MODEL
        self.batch_size = max(1, batch_size)

    def embed(self, text: str) -> np.ndarray:
        """Embed a single text.

        Returns:
            The embedding vector.

        Raises:
            VectorIndexUnavailableError: If the embeddings API call fails.
        """
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Embed texts in batches of ``batch_size``.

        Returns:
            One vector per input text, in input order.

        Raises:
            VectorIndexUnavailableError: If any embeddings API call fails.
        """
        embeddings: list[np.ndarray] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            try:
                response = self.client.embeddings.create(model=self.model, input=batch)
            except OpenAIError as exc:
                logger.exception("Error generating embeddings")
                msg = f"Embedding request failed: {exc}"
                raise VectorIndexUnavailableError(msg) from exc
            embeddings.extend(
                np.asarray(item.embedding, dtype="float32") for item in response.data
            )
            logger.debug("Embedded batch %d", start // self.batch_size + 1)
        return embeddings
