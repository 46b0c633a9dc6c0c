"""
Learning Pattern Consolidator merging new behavioural evidence into existing patterns.
"""

import uuid
from typing import List, Optional, Tuple

from ..models.core import LearningPattern
from ..utils.config import CONTEXTS, PatternConfig
from ..utils.errors import DocumentStoreError, ValidationError
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import LEARNING_PATTERNS
from ..utils.providers import DocumentStore
from ..utils.timestamp_utils import to_iso, utcnow

logger = get_logger(__name__)


class LearningPatternConsolidator:
    """Keeps at most one active pattern per owner, category and overlapping text."""

    def __init__(self, store: DocumentStore, pattern_config: Optional[PatternConfig] = None):
        self.store = store
        self.config = pattern_config or PatternConfig()
        if self.config.overlap_prefix_length <= 0:
            raise ValidationError('overlap_prefix_length must be positive')

    def overlap_key(self, pattern: str) -> str:
        return pattern.lower()[:self.config.overlap_prefix_length]

    def overlaps(self, existing_pattern: str, new_pattern: str) -> bool:
        """True when the existing text contains the leading characters of the new text, ignoring case."""
        return self.overlap_key(new_pattern) in existing_pattern.lower()

    def active_patterns(self, owner_id: str, category: str) -> List[LearningPattern]:
        """Active patterns for an owner and category, oldest first."""
        filters = {'owner_id': owner_id, 'category': category, 'is_active': True}
        documents = self.store.query(LEARNING_PATTERNS, filters, sort=[('created_at', 'asc')])
        patterns = [LearningPattern.from_document(document) for document in documents]
        return sorted(patterns, key=lambda pattern: (pattern.created_at, pattern.id))

    def consolidate(self,
                    owner_id: str,
                    pattern_type: str,
                    category: str,
                    pattern: str,
                    confidence: float,
                    evidence: List[str],
                    context: Optional[str] = None) -> Tuple[str, bool]:
        """
        Merge an observed pattern into an existing one, or store it as new.

        Args:
            owner_id: Pattern owner
            pattern_type: Kind of pattern (preference, routine, ...)
            category: Category scoping the overlap test
            pattern: Pattern text
            confidence: Observation confidence in [0, 1]
            evidence: Supporting statements, appended in order
            context: Context the observation came from (all contexts if None)

        Returns:
            Tuple of (pattern_id, created)

        Raises:
            ValidationError: If inputs are missing or confidence is out of range
        """
        if not owner_id:
            raise ValidationError('owner_id is required')
        if not category or not category.strip():
            raise ValidationError('Pattern category must not be empty')
        if not pattern or not pattern.strip():
            raise ValidationError('Pattern text must not be empty')
        if not 0.0 <= confidence <= 1.0:
            raise ValidationError(f'Confidence must be within [0, 1], got {confidence}')
        if context is not None and context not in CONTEXTS:
            raise ValidationError(f'Unknown context: {context}')

        now = utcnow()
        for existing in self.active_patterns(owner_id, category):
            if not self.overlaps(existing.pattern, pattern):
                continue

            boosted = min(1.0, existing.confidence + confidence * self.config.boost_factor)
            fields = {
                'confidence': boosted,
                'evidence': list(existing.evidence) + list(evidence),
                'last_validated': to_iso(now),
                'updated_at': to_iso(now),
            }
            if context and context not in existing.applicable_contexts:
                fields['applicable_contexts'] = list(existing.applicable_contexts) + [context]
            self.store.patch(LEARNING_PATTERNS, existing.id, fields)
            logger.info(f'Consolidated pattern {existing.id} ({category}): confidence {existing.confidence:.2f} -> {boosted:.2f}')
            return existing.id, False

        new_pattern = LearningPattern(id=str(uuid.uuid4()),
                                      owner_id=owner_id,
                                      pattern_type=pattern_type,
                                      category=category,
                                      pattern=pattern,
                                      confidence=confidence,
                                      evidence=list(evidence),
                                      applicable_contexts=[context] if context else list(CONTEXTS),
                                      is_active=True,
                                      contradiction_count=0,
                                      created_at=now,
                                      updated_at=now,
                                      context=context)
        self.store.insert(LEARNING_PATTERNS, new_pattern.to_document(), doc_id=new_pattern.id)
        logger.info(f'Created pattern {new_pattern.id} ({category}) for {owner_id}')
        return new_pattern.id, True

    def record_contradiction(self, pattern_id: str) -> LearningPattern:
        """
        Count a contradicting observation; deactivates the pattern once the count exceeds the threshold.

        Raises:
            DocumentStoreError: If the pattern does not exist
        """
        document = self.store.get(LEARNING_PATTERNS, pattern_id)
        if document is None:
            raise DocumentStoreError(f'Learning pattern {pattern_id} not found')

        pattern = LearningPattern.from_document(document)
        pattern.contradiction_count += 1
        pattern.updated_at = utcnow()
        fields = {'contradiction_count': pattern.contradiction_count, 'updated_at': to_iso(pattern.updated_at)}
        if pattern.is_active and pattern.contradiction_count > self.config.contradiction_threshold:
            pattern.is_active = False
            fields['is_active'] = False
            logger.info(f'Deactivated pattern {pattern_id} after {pattern.contradiction_count} contradictions')

        self.store.patch(LEARNING_PATTERNS, pattern_id, fields)
        return pattern
