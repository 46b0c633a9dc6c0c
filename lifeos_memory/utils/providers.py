"""
Capability interfaces for the external collaborators: embedding provider,
language-model provider and document store.

Concrete clients (Bedrock, OpenSearch) implement these; services only depend
on the interfaces so they can be constructed with any implementation.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

DOCUMENT_MODE = 'document'
QUERY_MODE = 'query'
EMBED_MODES = (DOCUMENT_MODE, QUERY_MODE)


@dataclass
class EmbeddingResult:
    """Vectors for a batch of texts, in input order."""
    vectors: List[List[float]]
    tokens_used: int = 0


@dataclass
class Completion:
    """Text returned by a language model call."""
    text: str
    tokens_used: int = 0


class EmbeddingProvider(ABC):
    """Maps text to dense vectors in document or query mode."""

    @abstractmethod
    def embed(self, texts: List[str], mode: str = DOCUMENT_MODE) -> EmbeddingResult:
        """Embed a batch of texts.

        Raises:
            ProviderError: If the provider call fails
        """

    def embed_document(self, text: str) -> List[float]:
        return self.embed([text], DOCUMENT_MODE).vectors[0]

    def embed_query(self, text: str) -> List[float]:
        return self.embed([text], QUERY_MODE).vectors[0]


class LanguageModelProvider(ABC):
    """Completes a prompt. Callers prompt for JSON and validate the result."""

    @abstractmethod
    def complete(self, prompt: str, temperature: Optional[float] = None, max_tokens: Optional[int] = None) -> Completion:
        """Complete a prompt.

        Raises:
            ProviderError: If the provider call fails
        """


class DocumentStore(ABC):
    """Indexed insert, patch-by-id and filtered query over named collections.

    Filters are equality matches on top-level fields; a list value matches a
    document whose field equals any of the listed values.
    """

    @abstractmethod
    def insert(self, collection: str, document: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        """Insert a document and return its id."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a document by id, or None."""

    @abstractmethod
    def patch(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Replace the given top-level fields of an existing document."""

    @abstractmethod
    def query(self,
              collection: str,
              filters: Dict[str, Any],
              sort: Optional[List[Tuple[str, str]]] = None,
              limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Return documents matching all filters, optionally sorted as (field, 'asc'|'desc')."""

    @abstractmethod
    def vector_search(self,
                      collection: str,
                      vector: List[float],
                      filters: Dict[str, Any],
                      top_k: int = 20,
                      field_name: str = 'embedding') -> List[Dict[str, Any]]:
        """Return up to top_k documents matching all filters, nearest to the vector first."""
