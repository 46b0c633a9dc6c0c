"""
Metadata Extraction Service deriving entities, keywords, memory type, importance,
sentiment and a summary from a statement.
"""

import math
from dataclasses import dataclass, field
from typing import Any, List, Optional

from ..models.core import MEMORY_TYPES
from ..utils.config import PipelineConfig
from ..utils.errors import ParseError, ValidationError
from ..utils.json_utils import parse_json_object
from ..utils.logging_config import get_logger
from ..utils.providers import LanguageModelProvider

logger = get_logger(__name__)

DEFAULT_MEMORY_TYPE = 'fact'
DEFAULT_IMPORTANCE = 5
DEFAULT_SENTIMENT = 0.0
FALLBACK_SUMMARY_LENGTH = 100

METADATA_PROMPT = """Analyze the following text and extract relevant metadata for personal memory storage.

Context: {context}
{sub_type_line}
Text: "{text}"

Please extract:
1. Key entities (people, places, organizations, dates, etc.)
2. Important keywords and concepts
3. Memory type (fact, preference, experience, skill, relationship)
4. Importance score (1-10, where 10 is very important personal information)
5. Sentiment score (-1 to 1, where -1 is negative, 0 is neutral, 1 is positive)
6. A concise summary (1-2 sentences)

Return as JSON:
{{
  "entities": ["entity1", "entity2"],
  "keywords": ["keyword1", "keyword2"],
  "memoryType": "preference|fact|experience|skill|relationship",
  "importance": 7,
  "sentiment": 0.2,
  "summary": "Brief summary of the memory"
}}"""


@dataclass
class ExtractedMetadata:
    entities: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    memory_type: str = DEFAULT_MEMORY_TYPE
    importance: int = DEFAULT_IMPORTANCE
    sentiment: float = DEFAULT_SENTIMENT
    summary: str = ''
    tokens_used: int = 0


def clamp_importance(value: Any) -> int:
    """Round and clamp to [1, 10]; non-numeric values become the neutral 5."""
    try:
        return max(1, min(10, int(round(float(value)))))
    except (TypeError, ValueError, OverflowError):
        return DEFAULT_IMPORTANCE


def clamp_sentiment(value: Any) -> float:
    """Clamp to [-1, 1]; non-numeric values become neutral 0."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return DEFAULT_SENTIMENT
    if math.isnan(value):
        return DEFAULT_SENTIMENT
    return max(-1.0, min(1.0, value))


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    result = []
    for item in value:
        item = str(item).strip() if item is not None else ''
        if item and item not in result:
            result.append(item)
    return result


class MetadataExtractor:
    """Extracts memory metadata with a language model, falling back deterministically on bad output."""

    def __init__(self, llm: LanguageModelProvider, pipeline_config: Optional[PipelineConfig] = None):
        self.llm = llm
        self.pipeline_config = pipeline_config or PipelineConfig()

    @staticmethod
    def fallback(text: str, tokens_used: int = 0) -> ExtractedMetadata:
        """Deterministic metadata used when the model output cannot be parsed."""
        return ExtractedMetadata(entities=[],
                                 keywords=[],
                                 memory_type=DEFAULT_MEMORY_TYPE,
                                 importance=DEFAULT_IMPORTANCE,
                                 sentiment=DEFAULT_SENTIMENT,
                                 summary=text[:FALLBACK_SUMMARY_LENGTH],
                                 tokens_used=tokens_used)

    def extract(self, text: str, context: str, sub_type: Optional[str] = None) -> ExtractedMetadata:
        """
        Extract metadata for a statement.

        Args:
            text: Statement text
            context: Declared context (work, personal, family)
            sub_type: Optional classifier sub-type passed to the prompt

        Returns:
            ExtractedMetadata with importance in [1, 10] and sentiment in [-1, 1]

        Raises:
            ValidationError: If text is empty
            ProviderError: If the language model call fails
        """
        if not text or not text.strip():
            raise ValidationError('Text must not be empty')

        prompt = METADATA_PROMPT.format(context=context,
                                        sub_type_line=f'Memory Type: {sub_type}\n' if sub_type else '',
                                        text=text)
        completion = self.llm.complete(prompt,
                                       temperature=self.pipeline_config.extraction_temperature,
                                       max_tokens=self.pipeline_config.extraction_max_tokens)

        try:
            data = parse_json_object(completion.text)
        except ParseError as e:
            logger.warning(f'Metadata response unparseable, using fallback: {e}')
            return self.fallback(text, completion.tokens_used)

        memory_type = str(data.get('memoryType') or DEFAULT_MEMORY_TYPE).strip().lower()
        if memory_type not in MEMORY_TYPES:
            logger.debug(f'Unknown memory type {memory_type!r}, using {DEFAULT_MEMORY_TYPE}')
            memory_type = DEFAULT_MEMORY_TYPE

        summary = data.get('summary')
        metadata = ExtractedMetadata(entities=_string_list(data.get('entities')),
                                     keywords=_string_list(data.get('keywords')),
                                     memory_type=memory_type,
                                     importance=clamp_importance(data.get('importance', DEFAULT_IMPORTANCE)),
                                     sentiment=clamp_sentiment(data.get('sentiment', DEFAULT_SENTIMENT)),
                                     summary=summary.strip() if isinstance(summary, str) and summary.strip() else
                                     text[:FALLBACK_SUMMARY_LENGTH],
                                     tokens_used=completion.tokens_used)

        logger.debug(f'Extracted metadata: {len(metadata.entities)} entities, {len(metadata.keywords)} keywords, '
                     f'type={metadata.memory_type}, importance={metadata.importance}')
        return metadata
