"""
Memory Pipeline routing classified statements to profile, memory and task storage.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..models.core import Memory, Task
from ..utils.config import PipelineConfig
from ..utils.errors import ValidationError
from ..utils.logging_config import get_logger
from ..utils.providers import DOCUMENT_MODE, EmbeddingProvider
from .content_classifier import Classification, ClassificationResult, Classifier, validate_statement
from .memory_store import MemoryStore
from .metadata_extraction import ExtractedMetadata, MetadataExtractor
from .profile_extraction import ProfileExtractor, ProfileStore
from .task_store import ExperienceDetector, TaskStore

logger = get_logger(__name__)


@dataclass
class ProcessingResult:
    """What a statement turned into."""
    classification: ClassificationResult
    memory: Optional[Memory] = None
    task: Optional[Task] = None
    profile_fields: List[str] = field(default_factory=list)
    profile: Optional[Dict[str, Any]] = None
    tokens_used: int = 0


class MemoryPipeline:
    """Classify, extract and store one or many statements."""

    def __init__(self,
                 classifier: Classifier,
                 metadata_extractor: MetadataExtractor,
                 profile_extractor: ProfileExtractor,
                 profile_store: ProfileStore,
                 memory_store: MemoryStore,
                 task_store: TaskStore,
                 embedder: EmbeddingProvider,
                 experience_detector: Optional[ExperienceDetector] = None,
                 pipeline_config: Optional[PipelineConfig] = None):
        self.classifier = classifier
        self.metadata_extractor = metadata_extractor
        self.profile_extractor = profile_extractor
        self.profile_store = profile_store
        self.memory_store = memory_store
        self.task_store = task_store
        self.embedder = embedder
        self.experience_detector = experience_detector or ExperienceDetector()
        self.config = pipeline_config or PipelineConfig()

    def _apply_profile(self, owner_id: str, text: str, context: str, classification: ClassificationResult) -> ProcessingResult:
        extraction = self.profile_extractor.extract(text, classification.classification, context, classification.sub_type)
        profile = self.profile_store.apply_patch(owner_id, extraction.patch)
        return ProcessingResult(classification=classification,
                                profile_fields=extraction.fields,
                                profile=profile,
                                tokens_used=extraction.tokens_used)

    def _store_memory(self,
                      owner_id: str,
                      text: str,
                      context: str,
                      classification: ClassificationResult,
                      metadata: ExtractedMetadata,
                      embedding: List[float],
                      source_type: str,
                      source_id: Optional[str],
                      now: Optional[datetime] = None) -> ProcessingResult:
        memory = self.memory_store.add(owner_id=owner_id,
                                       content=text,
                                       context=context,
                                       embedding=embedding,
                                       metadata=metadata,
                                       source_type=source_type,
                                       source_id=source_id,
                                       created_at=now)

        task = None
        if classification.classification == Classification.EXPERIENCE:
            experience = self.experience_detector.detect(text, now)
            if experience is not None:
                task = self.task_store.create(owner_id=owner_id,
                                              title=experience.title,
                                              description=experience.description,
                                              context=context,
                                              event_type=experience.event_type,
                                              participants=experience.participants,
                                              tags=experience.tags,
                                              due_date=experience.due_date,
                                              timeframe=experience.timeframe,
                                              linked_memory_id=memory.id,
                                              follow_up_at=experience.follow_up_at,
                                              created_at=memory.created_at)
            else:
                logger.debug(f'EXPERIENCE without date or participant stored as memory only: "{text[:100]}"')

        return ProcessingResult(classification=classification, memory=memory, task=task, tokens_used=metadata.tokens_used)

    def process(self,
                owner_id: str,
                text: str,
                context: str,
                source_type: str = 'message',
                source_id: Optional[str] = None,
                now: Optional[datetime] = None) -> ProcessingResult:
        """
        Classify a statement and store what it describes.

        PROFILE statements update the profile; MEMORY statements become
        memories; EXPERIENCE statements become memories plus a linked task when
        a date or participant is detected. Metadata extraction and embedding run
        concurrently.

        Args:
            owner_id: Statement owner
            text: Statement text
            context: work, personal or family
            source_type: Provenance type stored on memories
            source_id: Provenance id stored on memories
            now: Reference time for relative dates and timestamps

        Returns:
            ProcessingResult

        Raises:
            ValidationError: If inputs are invalid (no provider call is made)
            ClassificationError: If classification fails (nothing is stored)
            ProviderError: If extraction or embedding fails
        """
        if not owner_id:
            raise ValidationError('owner_id is required')
        validate_statement(text, context)

        classification = self.classifier.classify(text, context)
        logger.info(f'Processing {classification.classification.value} statement for {owner_id}')

        if classification.classification == Classification.PROFILE:
            return self._apply_profile(owner_id, text, context, classification)

        with ThreadPoolExecutor(max_workers=2) as executor:
            metadata_future = executor.submit(self.metadata_extractor.extract, text, context, classification.sub_type)
            embedding_future = executor.submit(self.embedder.embed, [text], DOCUMENT_MODE)
            metadata = metadata_future.result()
            embedding = embedding_future.result()

        result = self._store_memory(owner_id, text, context, classification, metadata, embedding.vectors[0], source_type, source_id,
                                    now)
        result.tokens_used += embedding.tokens_used
        return result

    def process_batch(self,
                      items: Sequence[Tuple[str, str, str]],
                      source_type: str = 'message',
                      now: Optional[datetime] = None) -> List[ProcessingResult]:
        """
        Process many statements with one batched embedding call.

        All statements are classified before anything is stored, so a
        classification failure leaves every store untouched.

        Args:
            items: (owner_id, text, context) tuples
            source_type: Provenance type stored on memories
            now: Reference time for relative dates and timestamps

        Returns:
            ProcessingResults in input order

        Raises:
            ValidationError: If any input is invalid
            ClassificationError: If any classification fails
            ProviderError: If extraction or embedding fails
        """
        for owner_id, text, context in items:
            if not owner_id:
                raise ValidationError('owner_id is required')
            validate_statement(text, context)
        if not items:
            return []

        classifications = self.classifier.classify_batch([(text, context) for _, text, context in items],
                                                         max_workers=self.config.max_workers)

        memory_indexes = [
            index for index, result in enumerate(classifications) if result.classification != Classification.PROFILE
        ]
        memory_texts = [items[index][1] for index in memory_indexes]
        logger.info(f'Batch of {len(items)}: {len(memory_indexes)} memory statement(s), '
                    f'{len(items) - len(memory_indexes)} profile statement(s)')

        metadata: List[ExtractedMetadata] = []
        vectors: List[List[float]] = []
        embed_tokens = 0
        if memory_indexes:
            with ThreadPoolExecutor(max_workers=max(2, self.config.max_workers)) as executor:
                embedding_future = executor.submit(self.embedder.embed, memory_texts, DOCUMENT_MODE)
                metadata_futures = [
                    executor.submit(self.metadata_extractor.extract, items[index][1], items[index][2],
                                    classifications[index].sub_type) for index in memory_indexes
                ]
                metadata = [future.result() for future in metadata_futures]
                embedding = embedding_future.result()
            vectors = embedding.vectors
            embed_tokens = embedding.tokens_used

        extracted = {index: (metadata[position], vectors[position]) for position, index in enumerate(memory_indexes)}
        results: List[ProcessingResult] = []
        for index, (owner_id, text, context) in enumerate(items):
            classification = classifications[index]
            if index in extracted:
                item_metadata, vector = extracted[index]
                results.append(
                    self._store_memory(owner_id, text, context, classification, item_metadata, vector, source_type, None, now))
            else:
                results.append(self._apply_profile(owner_id, text, context, classification))

        if results and embed_tokens:
            logger.debug(f'Batched embedding used {embed_tokens} tokens')
        return results
