"""
Shared pytest fixtures: in-memory document store and scripted providers.

Nothing here talks to the network; services are constructed with these
doubles exactly as build_runtime constructs them with the Bedrock and
OpenSearch clients.
"""

import copy
import hashlib
import json
import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest

from lifeos_memory.services.enhanced_search import cosine_similarity
from lifeos_memory.utils.errors import DocumentStoreError
from lifeos_memory.utils.providers import (DOCUMENT_MODE, Completion, DocumentStore, EmbeddingProvider, EmbeddingResult,
                                           LanguageModelProvider)

# A Monday; 'next Friday' is 2026-10-23
NOW = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store with the same filter semantics as the OpenSearch term/terms queries."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.writes: List[Tuple[str, str, str]] = []
        self.vector_queries: List[Tuple[str, Dict[str, Any], int]] = []

    def insert(self, collection: str, document: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or document.get('id') or f'{collection}-{len(self.collections.get(collection, {})) + 1}'
        self.collections.setdefault(collection, {})[doc_id] = copy.deepcopy({**document, 'id': doc_id})
        self.writes.append(('insert', collection, doc_id))
        return doc_id

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        document = self.collections.get(collection, {}).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    def patch(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        documents = self.collections.get(collection, {})
        if doc_id not in documents:
            raise DocumentStoreError(f'{doc_id} not found in {collection}')
        documents[doc_id].update(copy.deepcopy(fields))
        self.writes.append(('patch', collection, doc_id))

    @staticmethod
    def _matches(document: Dict[str, Any], field_name: str, expected: Any) -> bool:
        actual = document.get(field_name)
        options = list(expected) if isinstance(expected, (list, tuple, set)) else [expected]
        if isinstance(actual, list):
            return any(option in actual for option in options)
        return actual in options

    def query(self,
              collection: str,
              filters: Dict[str, Any],
              sort: Optional[List[Tuple[str, str]]] = None,
              limit: Optional[int] = None) -> List[Dict[str, Any]]:
        documents = [
            copy.deepcopy(document) for document in self.collections.get(collection, {}).values()
            if all(self._matches(document, name, value) for name, value in filters.items())
        ]
        for field_name, order in reversed(sort or []):
            present = [document for document in documents if document.get(field_name) is not None]
            missing = [document for document in documents if document.get(field_name) is None]
            present.sort(key=lambda document: document[field_name], reverse=order == 'desc')
            documents = present + missing
        return documents[:limit] if limit else documents

    def vector_search(self,
                      collection: str,
                      vector: List[float],
                      filters: Dict[str, Any],
                      top_k: int = 20,
                      field_name: str = 'embedding') -> List[Dict[str, Any]]:
        self.vector_queries.append((collection, dict(filters), top_k))
        documents = self.query(collection, filters)
        documents.sort(key=lambda document: (-cosine_similarity(vector, document.get(field_name) or []), document['id']))
        return documents[:top_k]

    def all(self, collection: str) -> List[Dict[str, Any]]:
        return list(self.collections.get(collection, {}).values())


Response = Union[str, Dict[str, Any], Exception]


class ScriptedLLM(LanguageModelProvider):
    """Returns queued responses in order, or the result of a responder callable."""

    def __init__(self, responses: Optional[List[Response]] = None, responder: Optional[Callable[[str], Response]] = None,
                 tokens_used: int = 42):
        self.responses = list(responses or [])
        self.responder = responder
        self.tokens_used = tokens_used
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *responses: Response) -> None:
        self.responses.extend(responses)

    def complete(self, prompt: str, temperature: Optional[float] = None, max_tokens: Optional[int] = None) -> Completion:
        self.calls.append({'prompt': prompt, 'temperature': temperature, 'max_tokens': max_tokens})
        if self.responder is not None:
            response = self.responder(prompt)
        elif self.responses:
            response = self.responses.pop(0)
        else:
            raise AssertionError(f'Unexpected language model call: {prompt[:80]}')

        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            response = json.dumps(response)
        return Completion(text=response, tokens_used=self.tokens_used)


class HashingEmbedder(EmbeddingProvider):
    """Deterministic bag-of-words vectors; texts sharing words are similar."""

    def __init__(self, dimension: int = 64, overrides: Optional[Dict[str, List[float]]] = None):
        self.dimension = dimension
        self.overrides = overrides or {}
        self.calls: List[Tuple[List[str], str]] = []

    def vector(self, text: str) -> List[float]:
        if text in self.overrides:
            return list(self.overrides[text])
        vector = [0.0] * self.dimension
        for token in text.lower().split():
            token = token.strip('.,!?\'"')
            if len(token) > 2:
                index = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dimension
                vector[index] += 1.0
        norm = math.sqrt(sum(value * value for value in vector)) or 1.0
        return [value / norm for value in vector]

    def embed(self, texts: List[str], mode: str = DOCUMENT_MODE) -> EmbeddingResult:
        self.calls.append((list(texts), mode))
        return EmbeddingResult(vectors=[self.vector(text) for text in texts], tokens_used=len(texts))


def metadata_response(entities=None, keywords=None, memory_type='experience', importance=6, sentiment=0.2, summary='Summary'):
    return {
        'entities': entities or [],
        'keywords': keywords or [],
        'memoryType': memory_type,
        'importance': importance,
        'sentiment': sentiment,
        'summary': summary,
    }


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def embedder():
    return HashingEmbedder()
