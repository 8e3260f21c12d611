"""
Embedding providers for semantic search.

Turns text into fixed-length vectors. The real model call goes through
the OpenAI embeddings API; whenever it fails or returns nothing, a
deterministic hash-seeded vector is produced instead so that storage
and search keep working.
"""

import logging
import math
import re
import threading
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

import openai

from .errors import TransientDependencyError


logger = logging.getLogger(__name__)


# Reference embedding dimension (matches the fallback generator)
DEFAULT_DIMENSION = 384

# Maximum characters sent to the model
DEFAULT_MAX_INPUT_LENGTH = 1500

_WHITESPACE_RE = re.compile(r"\s+")
_DISALLOWED_RE = re.compile(r"[^\w\s.-]", re.ASCII)


def preprocess_text(text: str, max_length: int = DEFAULT_MAX_INPUT_LENGTH) -> str:
    """
    Clean text before embedding.
    
    Collapses whitespace, drops characters outside a conservative
    alphanumeric/punctuation set and truncates to ``max_length``.
    """
    cleaned = _WHITESPACE_RE.sub(" ", text)
    cleaned = _DISALLOWED_RE.sub("", cleaned)
    return cleaned.strip()[:max_length]


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value


def text_seed(text: str) -> int:
    """
    Integer seed for a string.
    
    Rolling ``h * 31 + unit`` hash over UTF-16 code units, wrapped to a
    signed 32-bit integer, then made non-negative.
    """
    encoded = text.encode("utf-16-le")
    value = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        value = _to_int32((value << 5) - value + unit)
    return abs(value)


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""
    
    @abstractmethod
    def embed(self, text: str) -> List[float]:
        """
        Generate an embedding vector for text.
        
        Args:
            text: The text to embed
            
        Returns:
            A list of floats representing the embedding vector
        """
        pass
    
    @property
    @abstractmethod
    def dimension(self) -> int:
        """Get the embedding dimension."""
        pass


class FallbackEmbedding(EmbeddingProvider):
    """
    Deterministic pseudo-random embedding.
    
    Each component is drawn from a linear-congruential formula seeded
    by a hash of the text, and the vector is L2-normalized. The same
    text always yields a bit-identical vector. There is no semantic
    signal beyond exact-text identity.
    """
    
    def __init__(self, dimension: int = DEFAULT_DIMENSION):
        self._dimension = dimension
    
    @property
    def dimension(self) -> int:
        return self._dimension
    
    def embed(self, text: str) -> List[float]:
        seed = text_seed(text)
        vector = []
        for i in range(self._dimension):
            value = (seed + i) * 9301 + 49297
            vector.append((value % 233280) / 233280 * 2 - 1)
        
        # Sequential sum keeps results reproducible across interpreters
        total = 0.0
        for component in vector:
            total += component * component
        magnitude = math.sqrt(total)
        if magnitude == 0:
            return vector
        return [component / magnitude for component in vector]


class OpenAIEmbedding(EmbeddingProvider):
    """
    OpenAI embeddings API provider.
    
    Requests vectors of a fixed dimension so they are comparable with
    the fallback generator. The client is created lazily, with no
    automatic retries and a bounded request timeout.
    """
    
    DEFAULT_MODEL = "text-embedding-3-small"
    
    def __init__(
        self,
        model: Optional[str] = None,
        dimension: int = DEFAULT_DIMENSION,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[openai.OpenAI] = None,
    ):
        """
        Initialize the provider.
        
        Args:
            model: Embedding model name. Defaults to text-embedding-3-small.
            dimension: Requested vector dimension.
            api_key: API key; the openai client falls back to OPENAI_API_KEY.
            api_base: Optional base URL for compatible endpoints.
            timeout: Request timeout in seconds.
            client: Pre-built client, mainly for tests.
        """
        self.model = model or self.DEFAULT_MODEL
        self._dimension = dimension
        self.api_key = api_key
        self.api_base = api_base
        self.timeout = timeout
        self._client = client
    
    @property
    def dimension(self) -> int:
        return self._dimension
    
    def _get_client(self) -> openai.OpenAI:
        """Get or create the OpenAI client."""
        if self._client is None:
            self._client = openai.OpenAI(
                api_key=self.api_key,
                base_url=self.api_base,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client
    
    def embed(self, text: str) -> List[float]:
        try:
            response = self._get_client().embeddings.create(
                model=self.model,
                input=[text],
                dimensions=self._dimension,
            )
        except openai.OpenAIError as e:
            raise TransientDependencyError(f"Embedding request failed: {e}") from e
        
        if not response.data:
            return []
        return list(response.data[0].embedding)


class ResilientEmbedding(EmbeddingProvider):
    """
    Embedding provider that never fails.
    
    Cleans the text, asks the primary provider for a vector and falls
    back to the deterministic generator on any error or empty result.
    An empty result falls back on the cleaned text; a raised error falls
    back on the raw text.
    
    Example:
        >>> embedder = ResilientEmbedding(primary=OpenAIEmbedding())
        >>> vector, used_fallback = embedder.embed_tracked("Cats are mammals")
    """
    
    def __init__(
        self,
        primary: Optional[EmbeddingProvider] = None,
        fallback: Optional[EmbeddingProvider] = None,
        max_input_length: int = DEFAULT_MAX_INPUT_LENGTH,
    ):
        self.primary = primary
        self.fallback = fallback or FallbackEmbedding()
        self.max_input_length = max_input_length
        self._fallback_count = 0
        self._lock = threading.Lock()
    
    @property
    def dimension(self) -> int:
        return self.fallback.dimension
    
    @property
    def fallback_count(self) -> int:
        """Total number of vectors served by the fallback generator."""
        with self._lock:
            return self._fallback_count
    
    def embed(self, text: str) -> List[float]:
        vector, _ = self.embed_tracked(text)
        return vector
    
    def embed_tracked(self, text: str) -> Tuple[List[float], bool]:
        """
        Embed text and report where the vector came from.
        
        Returns:
            The vector and True when it came from the fallback generator
        """
        try:
            clean_text = preprocess_text(text, self.max_input_length)
        except Exception as e:
            logger.warning(f"Embedding preprocessing failed: {e}")
            return self._fallback(text), True
        
        if self.primary is None:
            return self._fallback(clean_text), True
        
        try:
            vector = self.primary.embed(clean_text)
        except Exception as e:
            logger.warning(f"Embedding generation failed, using fallback: {e}")
            return self._fallback(text), True
        
        if not vector:
            logger.warning("Embedding model returned no vector, using fallback")
            return self._fallback(clean_text), True
        return vector, False
    
    def _fallback(self, text: str) -> List[float]:
        with self._lock:
            self._fallback_count += 1
        return self.fallback.embed(text)


def create_embedding_provider(config) -> ResilientEmbedding:
    """
    Build the embedding provider described by an ``EmbeddingConfig``.
    
    The model call is skipped entirely when embeddings are disabled or
    no API key is available, so every vector comes from the fallback.
    """
    fallback = FallbackEmbedding(dimension=config.dimension)
    primary = None
    if config.enabled and config.api_key:
        primary = OpenAIEmbedding(
            model=config.model,
            dimension=config.dimension,
            api_key=config.api_key,
            api_base=config.api_base,
            timeout=config.timeout,
        )
    else:
        logger.info("No embedding model configured, using deterministic embeddings")
    
    return ResilientEmbedding(
        primary=primary,
        fallback=fallback,
        max_input_length=config.max_input_length,
    )
