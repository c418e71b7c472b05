"""Token-bounded chunking service"""

import logging
import math

import tiktoken

from repovec.config import config
from repovec.exceptions import TokenizationError

logger = logging.getLogger(__name__)

# A UTF-8 character spans at most 4 bytes, so at most 3 trailing tokens
# can hold an incomplete character
MAX_BOUNDARY_BACKOFF = 3


class Chunker:
    """Split text into token-limited chunks that decode back to the original text"""

    def __init__(self, encoder=None, chunk_size_tokens: int | None = None):
        """
        Initialize chunker

        Args:
            encoder: tiktoken-compatible encoder (encode/decode_bytes); resolved from
                the embedding model when None
            chunk_size_tokens: Token size of one file chunk (default from config)
        """
        self.chunk_size_tokens = chunk_size_tokens or config.chunk_size_tokens

        if encoder is not None:
            self.encoder = encoder
        else:
            try:
                self.encoder = tiktoken.encoding_for_model(config.embedding_model)
            except KeyError:
                # Fallback to cl100k_base (used by text-embedding-3-small)
                self.encoder = tiktoken.get_encoding("cl100k_base")

    def _encode(self, text: str) -> list[int]:
        try:
            # Special-token strings in source files are ordinary text here
            return self.encoder.encode(text, disallowed_special=())
        except Exception as e:
            raise TokenizationError(f"Failed to tokenize text: {e}") from e

    def count_tokens(self, text: str) -> int:
        """Count tokens in text"""
        return len(self._encode(text))

    def split_by_tokens(self, text: str, max_tokens: int) -> list[str]:
        """
        Split text at token boundaries into chunks of at most max_tokens tokens

        Text within the limit is returned unchanged as a single chunk. Otherwise the
        token sequence is cut every max_tokens tokens, giving ceil(n / max_tokens)
        chunks. A cut that would fall inside a multi-byte character moves back to the
        previous character boundary.

        Args:
            text: Text to split
            max_tokens: Maximum tokens per chunk

        Returns:
            Ordered chunks; "".join(chunks) == text

        Raises:
            ValueError: If max_tokens < 1
            TokenizationError: If the text cannot be split losslessly
        """
        if max_tokens < 1:
            raise ValueError(f"max_tokens must be >= 1, got {max_tokens}")

        tokens = self._encode(text)
        total_tokens = len(tokens)

        if total_tokens <= max_tokens:
            return [text]

        logger.debug(
            f"Text has {total_tokens} tokens, splitting into "
            f"{math.ceil(total_tokens / max_tokens)} chunks of {max_tokens}"
        )

        chunks: list[str] = []
        start = 0
        while start < total_tokens:
            end = min(start + max_tokens, total_tokens)
            chunk_text, end = self._decode_slice(tokens, start, end)
            chunks.append(chunk_text)
            start = end

        if "".join(chunks) != text:
            raise TokenizationError(
                f"Chunked text does not reconstruct the original ({total_tokens} tokens)"
            )

        return chunks

    def _decode_slice(self, tokens: list[int], start: int, end: int) -> tuple[str, int]:
        """Decode tokens[start:boundary] for the largest clean boundary <= end"""
        for boundary in range(end, max(start, end - MAX_BOUNDARY_BACKOFF - 1), -1):
            try:
                data = self.encoder.decode_bytes(tokens[start:boundary])
            except Exception as e:
                raise TokenizationError(f"Failed to decode tokens {start}:{boundary}: {e}") from e

            try:
                return data.decode("utf-8"), boundary
            except UnicodeDecodeError:
                continue

        raise TokenizationError(f"Tokens {start}:{end} do not decode to valid UTF-8 text")

    def chunk_file(
        self, content: str, max_tokens: int | None = None, max_chunks: int | None = None
    ) -> list[tuple[int, int, str]]:
        """
        Split file content into chunk items

        Args:
            content: File content
            max_tokens: Tokens per chunk (default: chunk_size_tokens)
            max_chunks: Keep only this many leading chunks (default: all)

        Returns:
            List of (chunk_index, total_chunks, text) tuples
        """
        chunks = self.split_by_tokens(content, max_tokens or self.chunk_size_tokens)
        total_chunks = len(chunks)

        if max_chunks is not None and total_chunks > max_chunks:
            logger.debug(f"Keeping {max_chunks} of {total_chunks} chunks")
            chunks = chunks[:max_chunks]

        return [(index, total_chunks, text) for index, text in enumerate(chunks)]
