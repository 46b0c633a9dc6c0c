"""
Memory Store for append-only episodic memories.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.core import MEMORY_TYPES, Memory
from ..utils.config import CONTEXTS
from ..utils.errors import DocumentStoreError, ValidationError
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import MEMORIES
from ..utils.providers import DocumentStore
from ..utils.timestamp_utils import to_iso, utcnow
from .metadata_extraction import ExtractedMetadata, clamp_importance, clamp_sentiment

logger = get_logger(__name__)

# Fields a corrective patch may touch; content, embedding and provenance are immutable
CORRECTIVE_FIELDS = ('summary', 'memory_type', 'importance', 'sentiment', 'entities', 'keywords', 'context')


class MemoryStore:
    """Inserts memories once and allows only corrective patches afterwards."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def add(self,
            owner_id: str,
            content: str,
            context: str,
            embedding: List[float],
            metadata: ExtractedMetadata,
            source_type: str = 'message',
            source_id: Optional[str] = None,
            created_at: Optional[datetime] = None) -> Memory:
        """
        Store a new memory.

        Args:
            owner_id: Memory owner
            content: Original statement text
            context: work, personal or family
            embedding: Document-mode embedding of the content
            metadata: Extracted metadata (already clamped)
            source_type: Provenance type (message, voice, import, ...)
            source_id: Provenance id (defaults to the memory id)
            created_at: Creation time (defaults to now)

        Returns:
            The stored Memory

        Raises:
            ValidationError: If owner, content or context are invalid
        """
        if not owner_id:
            raise ValidationError('owner_id is required')
        if not content or not content.strip():
            raise ValidationError('Memory content must not be empty')
        if context not in CONTEXTS:
            raise ValidationError(f'Unknown context: {context}')

        memory_id = str(uuid.uuid4())
        memory = Memory(id=memory_id,
                        owner_id=owner_id,
                        content=content,
                        source_type=source_type,
                        source_id=source_id or memory_id,
                        context=context,
                        embedding=list(embedding),
                        summary=metadata.summary,
                        memory_type=metadata.memory_type if metadata.memory_type in MEMORY_TYPES else 'fact',
                        importance=clamp_importance(metadata.importance),
                        sentiment=clamp_sentiment(metadata.sentiment),
                        entities=list(metadata.entities),
                        keywords=list(metadata.keywords),
                        created_at=created_at or utcnow())

        self.store.insert(MEMORIES, memory.to_document(), doc_id=memory_id)
        logger.debug(f'Stored memory {memory_id} for {owner_id} ({memory.memory_type}, importance {memory.importance})')
        return memory

    def get(self, memory_id: str) -> Optional[Memory]:
        document = self.store.get(MEMORIES, memory_id)
        return Memory.from_document(document) if document else None

    def patch(self, memory_id: str, fields: Dict[str, Any]) -> Memory:
        """
        Apply a corrective patch to a stored memory.

        Raises:
            ValidationError: If a field is not correctable or a value is invalid
            DocumentStoreError: If the memory does not exist
        """
        unknown = sorted(set(fields) - set(CORRECTIVE_FIELDS))
        if unknown:
            raise ValidationError(f'Memory fields cannot be patched: {", ".join(unknown)}')

        memory = self.get(memory_id)
        if memory is None:
            raise DocumentStoreError(f'Memory {memory_id} not found')

        updates = dict(fields)
        if 'importance' in updates:
            updates['importance'] = clamp_importance(updates['importance'])
        if 'sentiment' in updates:
            updates['sentiment'] = clamp_sentiment(updates['sentiment'])
        if 'memory_type' in updates and updates['memory_type'] not in MEMORY_TYPES:
            raise ValidationError(f'Unknown memory type: {updates["memory_type"]}')
        if 'context' in updates and updates['context'] not in CONTEXTS:
            raise ValidationError(f'Unknown context: {updates["context"]}')

        updated_at = utcnow()
        self.store.patch(MEMORIES, memory_id, {**updates, 'updated_at': to_iso(updated_at)})
        for name, value in updates.items():
            setattr(memory, name, value)
        memory.updated_at = updated_at
        logger.info(f'Patched memory {memory_id}: {", ".join(sorted(updates))}')
        return memory

    @staticmethod
    def _owner_filters(owner_id: str, context: Optional[str]) -> Dict[str, Any]:
        filters: Dict[str, Any] = {'owner_id': owner_id, 'is_active': True}
        if context:
            filters['context'] = context
        return filters

    def list_for_owner(self, owner_id: str, context: Optional[str] = None, limit: Optional[int] = None) -> List[Memory]:
        """Active memories for an owner, newest first."""
        documents = self.store.query(MEMORIES, self._owner_filters(owner_id, context), sort=[('created_at', 'desc')], limit=limit)
        return [Memory.from_document(document) for document in documents]

    def nearest(self, owner_id: str, vector: List[float], context: Optional[str] = None, top_k: int = 100) -> List[Memory]:
        """Active memories closest to a query vector, regardless of age."""
        documents = self.store.vector_search(MEMORIES, vector, self._owner_filters(owner_id, context), top_k=top_k)
        return [Memory.from_document(document) for document in documents]

    def matching_terms(self, owner_id: str, field_name: str, values: List[str], context: Optional[str] = None,
                       limit: Optional[int] = None) -> List[Memory]:
        """Active memories whose entities or keywords include any of the given values."""
        if not values:
            return []
        filters = {**self._owner_filters(owner_id, context), field_name: list(values)}
        documents = self.store.query(MEMORIES, filters, sort=[('created_at', 'desc')], limit=limit)
        return [Memory.from_document(document) for document in documents]
