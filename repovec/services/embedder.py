"""Embedding generation service using local models via fastembed"""

import asyncio
import logging

from fastembed import TextEmbedding

from repovec.config import config
from repovec.exceptions import ProviderError
from repovec.services.chunker import Chunker
from repovec.utils.vector_math import average_embeddings

logger = logging.getLogger(__name__)


class EmbeddingError(ProviderError):
    """Raised when the embedding model fails to load or embed"""

    pass


class Embedder:
    """Generate embeddings using local models (fastembed)"""

    def __init__(
        self,
        model=None,
        chunker: Chunker | None = None,
        dimension: int | None = None,
        max_tokens: int | None = None,
    ):
        """
        Initialize embedder

        Args:
            model: fastembed-compatible model exposing embed(texts); loaded lazily when None
            chunker: Chunker used to bound oversized documents
            dimension: Expected vector length (default from config)
            max_tokens: Token limit per embedding call (default from config)
        """
        self._model = model
        self.chunker = chunker or Chunker()
        self.dimension = dimension or config.embedding_dimension
        self.max_tokens = max_tokens or config.embedding_max_tokens

    @property
    def model(self):
        if self._model is None:
            logger.info(f"Loading embedding model {config.embedding_model}")
            try:
                self._model = TextEmbedding(
                    model_name=config.embedding_model,
                    cache_dir=config.fastembed_cache_dir,
                    threads=6,
                )
            except Exception as e:
                raise EmbeddingError(f"Failed to load embedding model: {e}", e) from e
        return self._model

    def _embed_sync(self, texts: list[str]) -> list[list[float]]:
        try:
            # fastembed returns generator of numpy arrays
            vectors = [emb.tolist() for emb in self.model.embed(texts)]
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(f"Embedding failed for {len(texts)} texts: {e}", e) from e

        if len(vectors) != len(texts):
            raise EmbeddingError(f"Model returned {len(vectors)} vectors for {len(texts)} texts")
        for vector in vectors:
            if len(vector) != self.dimension:
                raise EmbeddingError(
                    f"Model returned dimension {len(vector)}, expected {self.dimension}"
                )
        return vectors

    async def embed_text(self, text: str) -> list[float]:
        """
        Generate embedding for a single text

        Args:
            text: Text to embed

        Returns:
            list[float]: Embedding vector of the configured dimension
        """
        embeddings = await asyncio.to_thread(self._embed_sync, [text])
        return embeddings[0]

    async def embed_batch(
        self, texts: list[str], batch_size: int | None = None
    ) -> list[list[float]]:
        """
        Generate embeddings for multiple texts in batches

        Args:
            texts: List of texts to embed
            batch_size: Number of texts to process per batch (default from config)

        Returns:
            list[list[float]]: List of embedding vectors
        """
        if not texts:
            return []

        batch_size = batch_size or config.embedding_batch_size

        embeddings: list[list[float]] = []
        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            embeddings.extend(await asyncio.to_thread(self._embed_sync, batch))
            logger.debug(f"Embedded {min(i + batch_size, len(texts))}/{len(texts)} texts")

        return embeddings

    async def embed_document(self, text: str) -> list[float]:
        """
        Embed text of any length

        Text over the token limit is split into token-bounded chunks, each chunk is
        embedded, and the elementwise mean of the chunk vectors is returned.

        Raises:
            EmbeddingError: If the model fails
            TokenizationError: If the text cannot be split losslessly
        """
        token_count = self.chunker.count_tokens(text)
        if token_count <= self.max_tokens:
            return await self.embed_text(text)

        chunks = self.chunker.split_by_tokens(text, self.max_tokens)
        logger.info(f"Text has {token_count} tokens, averaging {len(chunks)} chunk embeddings")
        vectors = await self.embed_batch(chunks)
        return average_embeddings(vectors)
