"""
Core data models for the memory engine.

Dataclasses mirror the stored documents; `to_document`/`from_document` convert
between the two (timestamps are stored as ISO-8601 strings).
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..utils.timestamp_utils import from_iso, to_iso

MEMORY_TYPES = ('fact', 'preference', 'experience', 'skill', 'relationship')
TASK_STATUSES = ('planned', 'in_progress', 'completed', 'cancelled')

_MEMORY_DATES = ('created_at', 'updated_at')
_TASK_DATES = ('due_date', 'follow_up_at', 'created_at', 'updated_at')
_PATTERN_DATES = ('last_validated', 'created_at', 'updated_at')


def _dump(obj: Any, date_fields: tuple) -> Dict[str, Any]:
    document = asdict(obj)
    for name in date_fields:
        document[name] = to_iso(document[name])
    return document


def _load(cls, document: Dict[str, Any], date_fields: tuple):
    known = {name: document[name] for name in cls.__dataclass_fields__ if name in document}
    for name in date_fields:
        if name in known:
            known[name] = from_iso(known[name])
    return cls(**known)


@dataclass
class Memory:
    """A completed event, preference or fact, stored once and never deleted."""
    id: str
    owner_id: str
    content: str
    source_type: str
    source_id: str
    context: str  # work | personal | family
    embedding: List[float]
    summary: str
    memory_type: str
    importance: int  # 1..10
    sentiment: float  # -1..1
    entities: List[str]
    keywords: List[str]
    created_at: datetime
    updated_at: Optional[datetime] = None
    is_active: bool = True

    def to_document(self) -> Dict[str, Any]:
        return _dump(self, _MEMORY_DATES)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'Memory':
        return _load(cls, document, _MEMORY_DATES)


@dataclass
class Task:
    """A scheduled, mutable item created from a future-dated statement."""
    id: str
    owner_id: str
    title: str
    description: str
    context: str
    event_type: str
    participants: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    due_date: Optional[datetime] = None
    timeframe: str = ''
    linked_memory_id: Optional[str] = None
    status: str = 'planned'
    follow_up_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        return _dump(self, _TASK_DATES)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'Task':
        return _load(cls, document, _TASK_DATES)


@dataclass
class LearningPattern:
    """A behavioural pattern observed for an owner within a category."""
    id: str
    owner_id: str
    pattern_type: str
    category: str
    pattern: str
    confidence: float
    evidence: List[str]
    applicable_contexts: List[str]
    is_active: bool
    contradiction_count: int
    created_at: datetime
    updated_at: datetime
    context: Optional[str] = None
    last_validated: Optional[datetime] = None

    def to_document(self) -> Dict[str, Any]:
        return _dump(self, _PATTERN_DATES)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> 'LearningPattern':
        return _load(cls, document, _PATTERN_DATES)
