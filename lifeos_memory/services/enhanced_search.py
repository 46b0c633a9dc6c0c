"""
Enhanced Search Engine fusing semantic, entity, temporal and keyword signals
into one ranked list of memory and profile candidates.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models.core import Memory
from ..utils.config import CONTEXTS, SearchConfig
from ..utils.errors import ValidationError
from ..utils.logging_config import get_logger
from ..utils.providers import EmbeddingProvider
from ..utils.text_analysis import extract_entities, keyword_tokens, tokenize
from ..utils.timestamp_utils import age_in_days, utcnow
from .memory_store import MemoryStore
from .profile_extraction import ProfileAnswer, ProfileQueryResolver

logger = get_logger(__name__)

RECENCY_CUES = ('last', 'latest', 'recent', 'recently', 'current', 'currently', 'now', 'new', 'today')
NEUTRAL_TEMPORAL_SCORE = 0.5

SOURCE_MEMORY = 'memory'
SOURCE_PROFILE = 'profile'
SOURCE_TASK = 'task'


@dataclass
class SearchScores:
    semantic: float = 0.0
    entity: float = 0.0
    temporal: float = NEUTRAL_TEMPORAL_SCORE
    keyword: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return {'semantic': self.semantic, 'entity': self.entity, 'temporal': self.temporal, 'keyword': self.keyword}


@dataclass
class SearchResult:
    """A ranked answer candidate with its component scores."""
    id: str
    source: str
    content: str
    summary: str
    memory_type: str
    context: Optional[str]
    scores: SearchScores
    final_score: float
    created_at: Optional[datetime] = None
    entities: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QueryAnalysis:
    """Signals extracted once per query."""
    text: str
    entities: List[str]
    keywords: List[str]
    wants_recent: bool


def analyse_query(query: str) -> QueryAnalysis:
    tokens = tokenize(query)
    return QueryAnalysis(text=query,
                         entities=extract_entities(query),
                         keywords=keyword_tokens(query),
                         wants_recent=any(cue in tokens for cue in RECENCY_CUES))


def cosine_similarity(left: List[float], right: List[float]) -> float:
    """Cosine similarity; 0 for empty, zero-norm or mismatched vectors."""
    if not left or not right or len(left) != len(right):
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if norm == 0:
        return 0.0
    return dot / norm


def entity_score(query_entities: List[str], candidate_entities: List[str]) -> float:
    """Fraction of query entities matching a candidate entity exactly or by substring."""
    if not query_entities:
        return 0.0
    stored = [entity.lower() for entity in candidate_entities if entity]
    matched = 0
    for entity in query_entities:
        entity = entity.lower()
        if any(entity == item or entity in item or item in entity for item in stored):
            matched += 1
    return matched / len(query_entities)


def keyword_score(query_keywords: List[str], candidate_keywords: List[str], content: str) -> float:
    """Fraction of query keywords present in the candidate keyword set or content."""
    if not query_keywords:
        return 0.0
    vocabulary = set(tokenize(content))
    for keyword in candidate_keywords:
        vocabulary.add(keyword.lower())
        vocabulary.update(tokenize(keyword))
    return sum(1 for keyword in query_keywords if keyword in vocabulary) / len(query_keywords)


def temporal_score(created_at: Optional[datetime], wants_recent: bool, half_life_days: float, now: datetime) -> float:
    """Exponential recency decay when the query asks for recent content, neutral otherwise."""
    if not wants_recent or created_at is None:
        return NEUTRAL_TEMPORAL_SCORE
    return 0.5**(age_in_days(created_at, now) / half_life_days)


class EnhancedSearchEngine:
    """Weighted four-signal retrieval with profile-first resolution."""

    def __init__(self,
                 embedder: EmbeddingProvider,
                 memory_store: MemoryStore,
                 profile_resolver: Optional[ProfileQueryResolver] = None,
                 search_config: Optional[SearchConfig] = None):
        """
        Initialize the search engine.

        Raises:
            ValidationError: If the configured weights are negative or do not sum to 1
        """
        self.embedder = embedder
        self.memory_store = memory_store
        self.profile_resolver = profile_resolver
        self.config = search_config or SearchConfig()

        self.weights = self.config.weights()
        if any(weight < 0 for weight in self.weights.values()) or not math.isclose(sum(self.weights.values()), 1.0, abs_tol=1e-6):
            raise ValidationError(f'Search weights must be non-negative and sum to 1, got {self.weights}')
        if self.config.recency_half_life_days <= 0:
            raise ValidationError('recency_half_life_days must be positive')

    def fuse(self, scores: SearchScores) -> float:
        return sum(self.weights[name] * value for name, value in scores.as_dict().items())

    def score_memory(self, memory: Memory, query_vector: List[float], analysis: QueryAnalysis, now: datetime) -> SearchResult:
        scores = SearchScores(semantic=max(0.0, cosine_similarity(query_vector, memory.embedding)),
                              entity=entity_score(analysis.entities, memory.entities),
                              temporal=temporal_score(memory.created_at, analysis.wants_recent, self.config.recency_half_life_days,
                                                      now),
                              keyword=keyword_score(analysis.keywords, memory.keywords, memory.content))
        return SearchResult(id=memory.id,
                            source=SOURCE_MEMORY,
                            content=memory.content,
                            summary=memory.summary,
                            memory_type=memory.memory_type,
                            context=memory.context,
                            scores=scores,
                            final_score=self.fuse(scores),
                            created_at=memory.created_at,
                            entities=list(memory.entities),
                            metadata={
                                'importance': memory.importance,
                                'sentiment': memory.sentiment,
                                'source_type': memory.source_type,
                                'source_id': memory.source_id
                            })

    def profile_candidate(self, owner_id: str, answer: ProfileAnswer, analysis: QueryAnalysis, now: datetime) -> SearchResult:
        """Synthesize a candidate from a profile fact; semantic similarity is fixed at 1.0."""
        values = [str(answer.value)] if not isinstance(answer.value, (list, dict)) else [answer.answer]
        scores = SearchScores(semantic=1.0,
                              entity=entity_score(analysis.entities, values),
                              temporal=1.0,
                              keyword=keyword_score(analysis.keywords, [], answer.answer))
        return SearchResult(id=f'profile:{owner_id}:{answer.field}',
                            source=SOURCE_PROFILE,
                            content=answer.answer,
                            summary=answer.answer,
                            memory_type=SOURCE_PROFILE,
                            context=None,
                            scores=scores,
                            final_score=self.fuse(scores),
                            created_at=now,
                            entities=values,
                            metadata={
                                'field': answer.field,
                                'value': answer.value
                            })

    def candidates(self, owner_id: str, query_vector: List[float], analysis: QueryAnalysis,
                   context: Optional[str]) -> List[Memory]:
        """
        Union of the nearest memories by embedding, entity and keyword matches,
        and the most recent window, each capped at the candidate pool size.
        """
        pool = self.config.candidate_pool_size
        sources = [
            self.memory_store.nearest(owner_id, query_vector, context=context, top_k=pool),
            self.memory_store.matching_terms(owner_id, 'entities', analysis.entities, context=context, limit=pool),
            self.memory_store.matching_terms(owner_id, 'keywords', analysis.keywords, context=context, limit=pool),
            self.memory_store.list_for_owner(owner_id, context=context, limit=pool),
        ]
        unique: Dict[str, Memory] = {}
        for memories in sources:
            for memory in memories:
                unique.setdefault(memory.id, memory)
        return list(unique.values())

    @staticmethod
    def rank(results: List[SearchResult]) -> List[SearchResult]:
        """Final score desc, then newest first, then id; fully deterministic."""
        return sorted(results,
                      key=lambda result: (-result.final_score, -(result.created_at.timestamp() if result.created_at else 0.0),
                                          result.id))

    def search(self,
               query: str,
               owner_id: str,
               context: Optional[str] = None,
               limit: Optional[int] = None,
               threshold: Optional[float] = None,
               now: Optional[datetime] = None) -> List[SearchResult]:
        """
        Rank an owner's memories (and profile facts) against a query.

        Args:
            query: Natural-language question
            owner_id: Owner whose knowledge is searched
            context: Optional context filter (work, personal, family)
            limit: Maximum results (config default if None)
            threshold: Minimum final score (config default if None)
            now: Reference time for recency scoring

        Returns:
            Ranked SearchResults; a matching profile fact always comes first

        Raises:
            ValidationError: If query, owner, context or limit are invalid
            ProviderError: If the query embedding fails
        """
        if not query or not query.strip():
            raise ValidationError('Query must not be empty')
        if not owner_id:
            raise ValidationError('owner_id is required')
        if context is not None and context not in CONTEXTS:
            raise ValidationError(f'Unknown context: {context}')
        limit = self.config.default_limit if limit is None else limit
        threshold = self.config.default_threshold if threshold is None else threshold
        if limit <= 0:
            raise ValidationError('limit must be positive')

        now = now or utcnow()
        analysis = analyse_query(query)
        logger.debug(f'Searching "{query}" for {owner_id} (entities: {analysis.entities}, recent: {analysis.wants_recent})')

        profile_results: List[SearchResult] = []
        if self.profile_resolver is not None:
            answer = self.profile_resolver.resolve(query, owner_id)
            if answer is not None:
                profile_results.append(self.profile_candidate(owner_id, answer, analysis, now))

        query_vector = self.embedder.embed_query(query)
        memories = self.candidates(owner_id, query_vector, analysis, context)

        scored = [self.score_memory(memory, query_vector, analysis, now) for memory in memories]
        kept = [result for result in scored if result.final_score >= threshold]
        logger.debug(f'{len(kept)}/{len(scored)} memory candidates above threshold {threshold}')

        results = profile_results + self.rank(kept)
        return results[:limit]
