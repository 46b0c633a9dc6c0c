"""
Health check utilities for the application.
"""

from typing import Any, Dict

from .errors import LifeOSMemoryError
from .logging_config import get_logger

logger = get_logger(__name__)


def _component_status(component: Any, service: str, **details: Any) -> Dict[str, Any]:
    check = getattr(component, 'health_check', None)
    if check is None:
        return {'healthy': True, 'service': service, 'detail': 'no health check available', **details}
    try:
        return {'healthy': bool(check()), 'service': service, **details}
    except LifeOSMemoryError as e:
        return {'healthy': False, 'service': service, 'error': str(e), **details}


def get_health_status(runtime) -> Dict[str, Any]:
    """Get detailed health status of the provider clients and document store.

    Args:
        runtime: Runtime built by build_runtime

    Returns:
        Dictionary with health status of each component
    """
    config = runtime.config
    return {
        'language_model': _component_status(runtime.llm, 'Amazon Bedrock LLM', model=config.bedrock_llm.model_id),
        'embedding': _component_status(runtime.embedder, 'Amazon Bedrock Embed', model=config.bedrock_embed.model_id),
        'document_store': _component_status(runtime.store, 'Amazon OpenSearch', endpoint=config.opensearch.endpoint),
    }


def check_health(runtime) -> bool:
    """Check the health of all system components.

    Returns:
        True if all components are healthy, False otherwise
    """
    health_status = get_health_status(runtime)
    all_healthy = all(status.get('healthy', False) for status in health_status.values())

    if all_healthy:
        logger.info('All system components are healthy')
    else:
        unhealthy = [name for name, status in health_status.items() if not status.get('healthy', False)]
        logger.warning(f'Unhealthy components: {", ".join(unhealthy)}')

    return all_healthy


def get_system_info(runtime) -> Dict[str, Any]:
    """Get system information and configuration.

    Returns:
        Dictionary with system information
    """
    config = runtime.config
    return {
        'service_name': 'LifeOS Memory',
        'version': '1.0.0',
        'configuration': {
            'environment': config.environment,
            'bedrock_llm_model': config.bedrock_llm.model_id,
            'bedrock_embed_model': config.bedrock_embed.model_id,
            'classifier_mode': config.pipeline.classifier_mode,
            'search_weights': config.search.weights(),
            'aws_region': config.bedrock_llm.region
        },
        'health_status': get_health_status(runtime)
    }
