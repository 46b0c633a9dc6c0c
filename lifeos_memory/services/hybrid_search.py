"""
Hybrid Disambiguation Search: structured tasks first, fused free-text ranking second.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from ..models.core import Task
from ..utils.errors import ValidationError
from ..utils.logging_config import get_logger
from ..utils.text_analysis import tokenize
from ..utils.timestamp_utils import to_iso
from .enhanced_search import SOURCE_TASK, EnhancedSearchEngine, SearchResult, SearchScores, analyse_query, keyword_score
from .task_store import TaskStore

logger = get_logger(__name__)


def task_match_count(task: Task, entities: List[str]) -> int:
    """Number of query entities found among a task's participants, tags or title."""
    participants = [participant.lower() for participant in task.participants]
    tags = [tag.lower() for tag in task.tags]
    title_tokens = set(tokenize(task.title))

    count = 0
    for entity in entities:
        entity = entity.lower()
        entity_tokens = tokenize(entity)
        if (any(entity == name or entity in name for name in participants) or entity in tags or f'participant:{entity}' in tags
                or (entity_tokens and all(token in title_tokens for token in entity_tokens))):
            count += 1
    return count


class HybridDisambiguationSearch:
    """Two-stage resolver with explicit precedence.

    Stage 1 looks up open tasks whose participants, tags or title match the
    entities named in the query. Stage 2 is the EnhancedSearchEngine ranking.
    Matching tasks always precede stage 2 results; memories linked to a
    returned task are dropped from stage 2 so the same event is not answered
    twice.
    """

    def __init__(self, task_store: TaskStore, search_engine: EnhancedSearchEngine):
        self.task_store = task_store
        self.search_engine = search_engine

    def match_tasks(self, query: str, owner_id: str, context: Optional[str] = None) -> List[Tuple[Task, int]]:
        """Open tasks matching the query entities, ordered by match count, due date and id."""
        entities = analyse_query(query).entities
        if not entities:
            return []

        matches = []
        for task in self.task_store.list_for_owner(owner_id, context=context):
            count = task_match_count(task, entities)
            if count:
                matches.append((task, count))

        # Undated tasks sort after dated ones
        matches.sort(key=lambda item: (-item[1], item[0].due_date is None, item[0].due_date.timestamp() if item[0].due_date else 0.0,
                                       item[0].id))
        return matches

    def _task_result(self, task: Task, count: int, query: str, entity_total: int) -> SearchResult:
        scores = SearchScores(semantic=0.0,
                              entity=count / entity_total,
                              keyword=keyword_score(analyse_query(query).keywords, task.tags, f'{task.title} {task.description}'))
        return SearchResult(id=task.id,
                            source=SOURCE_TASK,
                            content=task.description,
                            summary=task.title,
                            memory_type=task.event_type,
                            context=task.context,
                            scores=scores,
                            final_score=scores.entity,
                            created_at=task.created_at,
                            entities=list(task.participants),
                            metadata={
                                'match_count': count,
                                'due_date': to_iso(task.due_date),
                                'timeframe': task.timeframe,
                                'status': task.status,
                                'tags': list(task.tags),
                                'linked_memory_id': task.linked_memory_id,
                            })

    def search(self,
               query: str,
               owner_id: str,
               context: Optional[str] = None,
               limit: Optional[int] = None,
               threshold: Optional[float] = None,
               now: Optional[datetime] = None) -> List[SearchResult]:
        """
        Resolve a query against tasks first, then memories and profile facts.

        Args:
            query: Natural-language question
            owner_id: Owner whose knowledge is searched
            context: Optional context filter
            limit: Maximum results (search default if None)
            threshold: Minimum fused score for stage 2 results
            now: Reference time for recency scoring

        Returns:
            Task results followed by stage 2 results, truncated to limit; stage 2
            results unmodified when no task matches

        Raises:
            ValidationError: If the query or owner are invalid
            ProviderError: If the query embedding fails
        """
        if not query or not query.strip():
            raise ValidationError('Query must not be empty')

        stage_two = self.search_engine.search(query, owner_id, context=context, limit=limit, threshold=threshold, now=now)
        matches = self.match_tasks(query, owner_id, context=context)
        if not matches:
            logger.debug(f'No task matched "{query}", returning {len(stage_two)} fused result(s)')
            return stage_two

        limit = self.search_engine.config.default_limit if limit is None else limit
        entity_total = len(analyse_query(query).entities)
        task_results = [self._task_result(task, count, query, entity_total) for task, count in matches]
        # At most one linked memory per task, so the combined list still fills the limit
        linked = {task.linked_memory_id for task, _ in matches if task.linked_memory_id}
        remaining = [result for result in stage_two if result.id not in linked]

        logger.info(f'Hybrid search matched {len(task_results)} task(s) for "{query}"')
        return (task_results + remaining)[:limit]
