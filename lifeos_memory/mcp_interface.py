"""
MCP Interface Layer using fastmcp for agent orchestration.
"""
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from .runtime import Runtime, build_runtime
from .services.enhanced_search import SearchResult
from .services.memory_pipeline import ProcessingResult
from .utils.config import config
from .utils.errors import LifeOSMemoryError, ValidationError
from .utils.health_check import get_health_status
from .utils.logging_config import get_logger
from .utils.timestamp_utils import to_iso

logger = get_logger(__name__)


def _search_result_to_dict(result: SearchResult) -> Dict[str, Any]:
    return {
        'id': result.id,
        'source': result.source,
        'content': result.content,
        'summary': result.summary,
        'memory_type': result.memory_type,
        'context': result.context,
        'scores': result.scores.as_dict(),
        'final_score': round(result.final_score, 4),
        'created_at': to_iso(result.created_at),
        'metadata': result.metadata,
    }


def _processing_result_to_dict(result: ProcessingResult) -> Dict[str, Any]:
    return {
        'classification': result.classification.classification.value,
        'confidence': result.classification.confidence,
        'reasoning': result.classification.reasoning,
        'sub_type': result.classification.sub_type,
        'memory_id': result.memory.id if result.memory else None,
        'task': result.task.to_document() if result.task else None,
        'profile_fields': result.profile_fields,
        'tokens_used': result.tokens_used,
    }


def _tool_error(operation: str, error: LifeOSMemoryError) -> Exception:
    if isinstance(error, ValidationError):
        logger.warning(f'Invalid {operation} request: {error}')
        return ValueError(f'{operation} rejected: {error}')
    logger.error(f'{operation} failed: {error}')
    return RuntimeError(f'{operation} failed: {error}')


def process_statement(runtime: Runtime, user_id: str, text: str, context: str = 'personal') -> Dict[str, Any]:
    """Classify a statement and store it as a profile update, memory or task."""
    try:
        result = runtime.pipeline.process(user_id, text, context)
    except LifeOSMemoryError as e:
        raise _tool_error('Statement processing', e) from e
    logger.debug(f'MCP processed statement for user {user_id} as {result.classification.classification.value}')
    return _processing_result_to_dict(result)


def search_memories(runtime: Runtime,
                    user_id: str,
                    query: str,
                    context: Optional[str] = None,
                    top_k: int = 10,
                    threshold: Optional[float] = None) -> List[Dict[str, Any]]:
    """Rank memories and profile facts for a query."""
    if not query or not query.strip():
        return []
    try:
        results = runtime.search_engine.search(query, user_id, context=context, limit=top_k, threshold=threshold)
    except LifeOSMemoryError as e:
        raise _tool_error('Memory search', e) from e
    logger.debug(f'MCP search returned {len(results)} results for user {user_id}')
    return [_search_result_to_dict(result) for result in results]


def hybrid_search(runtime: Runtime, user_id: str, query: str, context: Optional[str] = None, top_k: int = 10) -> List[Dict[str, Any]]:
    """Resolve a query against scheduled tasks first, then memories."""
    if not query or not query.strip():
        return []
    try:
        results = runtime.hybrid_search.search(query, user_id, context=context, limit=top_k)
    except LifeOSMemoryError as e:
        raise _tool_error('Hybrid search', e) from e
    return [_search_result_to_dict(result) for result in results]


def store_learning_pattern(runtime: Runtime,
                           user_id: str,
                           pattern_type: str,
                           category: str,
                           pattern: str,
                           confidence: float,
                           evidence: List[str],
                           context: Optional[str] = None) -> Dict[str, Any]:
    """Merge an observed pattern into the user's learning patterns."""
    try:
        pattern_id, created = runtime.patterns.consolidate(user_id, pattern_type, category, pattern, confidence, evidence, context)
    except LifeOSMemoryError as e:
        raise _tool_error('Learning pattern storage', e) from e
    return {'pattern_id': pattern_id, 'created': created}


def create_app(runtime: Runtime) -> FastMCP:
    """Register the memory tools on a FastMCP application bound to a runtime."""
    mcp = FastMCP('LifeOS Memory')

    @mcp.tool(name='process_statement')
    def process_statement_tool(user_id: str, text: str, context: str = 'personal') -> Dict[str, Any]:
        """Classify a personal statement and store it.

        Args:
            user_id: User ID
            text: Statement text
            context: work, personal or family

        Returns:
            Classification and the ids of anything stored
        """
        return process_statement(runtime, user_id, text, context)

    @mcp.tool(name='search_memories')
    def search_memories_tool(user_id: str, query: str, context: Optional[str] = None, top_k: int = 10) -> List[Dict[str, Any]]:
        """Search the user's memories and profile.

        Args:
            user_id: User ID
            query: Natural language query
            context: Optional context filter
            top_k: Maximum number of results to return (default: 10)

        Returns:
            Ranked results with component scores
        """
        return search_memories(runtime, user_id, query, context, top_k)

    @mcp.tool(name='hybrid_search')
    def hybrid_search_tool(user_id: str, query: str, context: Optional[str] = None, top_k: int = 10) -> List[Dict[str, Any]]:
        """Search scheduled tasks first, then memories and profile.

        Args:
            user_id: User ID
            query: Natural language query
            context: Optional context filter
            top_k: Maximum number of results to return (default: 10)
        """
        return hybrid_search(runtime, user_id, query, context, top_k)

    @mcp.tool(name='store_learning_pattern')
    def store_learning_pattern_tool(user_id: str,
                                    pattern_type: str,
                                    category: str,
                                    pattern: str,
                                    confidence: float,
                                    evidence: List[str],
                                    context: Optional[str] = None) -> Dict[str, Any]:
        """Record an observed behavioural pattern, merging it with an overlapping one."""
        return store_learning_pattern(runtime, user_id, pattern_type, category, pattern, confidence, evidence, context)

    @mcp.tool()
    def health() -> Dict[str, Any]:
        """Report provider and document store health."""
        return get_health_status(runtime)

    return mcp


if __name__ == '__main__':
    app = create_app(build_runtime(config))
    app.run(transport=config.mcp.transport, host=config.mcp.host, port=config.mcp.port)
