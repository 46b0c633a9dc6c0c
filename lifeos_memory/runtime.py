"""
Runtime wiring: constructs provider clients once and injects them into the services.
"""

from dataclasses import dataclass
from typing import Optional

from .services.content_classifier import Classifier, LLMContentClassifier, RuleBasedClassifier
from .services.enhanced_search import EnhancedSearchEngine
from .services.hybrid_search import HybridDisambiguationSearch
from .services.learning_patterns import LearningPatternConsolidator
from .services.memory_pipeline import MemoryPipeline
from .services.memory_store import MemoryStore
from .services.metadata_extraction import MetadataExtractor
from .services.profile_extraction import ProfileExtractor, ProfileQueryResolver, ProfileStore
from .services.task_store import ExperienceDetector, TaskStore
from .utils.config import AppConfig
from .utils.errors import ValidationError
from .utils.logging_config import get_logger
from .utils.providers import DocumentStore, EmbeddingProvider, LanguageModelProvider

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Every service of the engine, sharing one set of provider clients."""
    config: AppConfig
    llm: LanguageModelProvider
    embedder: EmbeddingProvider
    store: DocumentStore
    classifier: Classifier
    profile_store: ProfileStore
    memory_store: MemoryStore
    task_store: TaskStore
    search_engine: EnhancedSearchEngine
    hybrid_search: HybridDisambiguationSearch
    patterns: LearningPatternConsolidator
    pipeline: MemoryPipeline


def build_classifier(config: AppConfig, llm: LanguageModelProvider) -> Classifier:
    mode = config.pipeline.classifier_mode.lower()
    if mode == 'llm':
        return LLMContentClassifier(llm, config.pipeline)
    if mode == 'rules':
        return RuleBasedClassifier()
    raise ValidationError(f'Unknown classifier mode: {config.pipeline.classifier_mode} (expected llm or rules)')


def build_runtime(config: AppConfig,
                  llm: Optional[LanguageModelProvider] = None,
                  embedder: Optional[EmbeddingProvider] = None,
                  store: Optional[DocumentStore] = None) -> Runtime:
    """
    Build all services from configuration.

    Args:
        config: Application configuration
        llm: Language model provider (Bedrock if None)
        embedder: Embedding provider (Bedrock if None)
        store: Document store (OpenSearch if None; indexes are created on first build)

    Returns:
        Runtime with every service constructed
    """
    if llm is None:
        from .utils.bedrock_llm import BedrockLLM
        llm = BedrockLLM(config.bedrock_llm)
    if embedder is None:
        from .utils.bedrock_embed import BedrockEmbed
        embedder = BedrockEmbed(config.bedrock_embed)
    if store is None:
        from .utils.opensearch_client import OpenSearchClient
        store = OpenSearchClient(config.opensearch)
        store.ensure_indexes()

    classifier = build_classifier(config, llm)
    profile_store = ProfileStore(store)
    memory_store = MemoryStore(store)
    task_store = TaskStore(store)
    search_engine = EnhancedSearchEngine(embedder, memory_store, ProfileQueryResolver(profile_store), config.search)

    pipeline = MemoryPipeline(classifier=classifier,
                              metadata_extractor=MetadataExtractor(llm, config.pipeline),
                              profile_extractor=ProfileExtractor(llm, config.pipeline),
                              profile_store=profile_store,
                              memory_store=memory_store,
                              task_store=task_store,
                              embedder=embedder,
                              experience_detector=ExperienceDetector(),
                              pipeline_config=config.pipeline)

    logger.info(f'Built runtime ({config.environment}, classifier: {type(classifier).__name__})')
    return Runtime(config=config,
                   llm=llm,
                   embedder=embedder,
                   store=store,
                   classifier=classifier,
                   profile_store=profile_store,
                   memory_store=memory_store,
                   task_store=task_store,
                   search_engine=search_engine,
                   hybrid_search=HybridDisambiguationSearch(task_store, search_engine),
                   patterns=LearningPatternConsolidator(store, config.patterns),
                   pipeline=pipeline)
