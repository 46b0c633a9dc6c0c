"""
Content Classification Service routing statements to PROFILE, MEMORY or EXPERIENCE.
"""

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from ..utils.config import CONTEXTS, PipelineConfig
from ..utils.errors import LifeOSMemoryError, ParseError, ProviderError, ValidationError
from ..utils.json_utils import parse_json_object
from ..utils.logging_config import get_logger
from ..utils.providers import LanguageModelProvider
from ..utils.text_analysis import contains_phrase, count_phrases

logger = get_logger(__name__)


class Classification(str, Enum):
    PROFILE = 'PROFILE'
    MEMORY = 'MEMORY'
    EXPERIENCE = 'EXPERIENCE'


PROFILE_SUB_TYPES = ('work_info', 'personal_info', 'family_info', 'preferences', 'service_providers')


class ClassificationError(LifeOSMemoryError):
    """Classification could not be determined. Callers must not fall back to PROFILE."""
    pass


@dataclass
class ClassificationResult:
    """Outcome of classifying one statement."""
    classification: Classification
    confidence: float
    reasoning: str
    sub_type: Optional[str] = None


CLASSIFICATION_EXAMPLES = """
PROFILE (WHO I AM - Biographical/Current State):
- "I work at Microsoft" -> PROFILE (work_info)
- "My birthday is December 29th" -> PROFILE (personal_info)
- "I live in Miami" -> PROFILE (personal_info)
- "Dr. Smith is my dentist" -> PROFILE (service_providers)
- "I'm vegetarian" -> PROFILE (preferences)
- "Just started working at Microsoft last week" -> PROFILE (work_info)
- "My wife's name is Sarah" -> PROFILE (family_info)

MEMORY (WHAT I DID - Past Events/Experiences):
- "Had dinner at Luigi's last night" -> MEMORY
- "The meeting with Bob went well yesterday" -> MEMORY
- "Visited the dentist last month" -> MEMORY
- "Sarah and I discussed the wedding plans" -> MEMORY

EXPERIENCE (WHAT I'LL DO - Future Events/Plans):
- "Meeting with Sarah next Friday at 2pm" -> EXPERIENCE
- "Need to renew my passport next month" -> EXPERIENCE
- "Dentist appointment tomorrow" -> EXPERIENCE
- "Have to finish the report by Monday" -> EXPERIENCE
"""

CLASSIFICATION_PROMPT = """You classify statements for a personal memory assistant.

Classify the user content into exactly one category:

1. PROFILE - durable self-description: current job, residence, birthday, family members,
   preferences, recurring service providers. "I am", "I work at", "I live in" statements.
2. MEMORY - a completed, time-bound event: past activities, meetings, dinners, trips.
3. EXPERIENCE - a dated or relatively-dated future event: appointments, plans, deadlines,
   anything with "next", "tomorrow", "upcoming" or a weekday.

When tense is ambiguous, choose MEMORY.

Context: {context}
Content: "{content}"

Examples:
{examples}

Respond with JSON only:
{{
  "classification": "PROFILE|MEMORY|EXPERIENCE",
  "confidence": 0.0-1.0,
  "reasoning": "brief explanation",
  "subType": "work_info|personal_info|family_info|preferences|service_providers (PROFILE only, else null)"
}}"""


def validate_statement(text: str, context: str) -> None:
    """Reject empty text or an unknown context before any provider call.

    Raises:
        ValidationError: If the input is unusable
    """
    if not text or not text.strip():
        raise ValidationError('Text must not be empty')
    if context not in CONTEXTS:
        raise ValidationError(f'Unknown context: {context} (expected one of {", ".join(CONTEXTS)})')


def _clamp_confidence(value, default: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, value))


class Classifier(ABC):
    """Capability interface for statement classification."""

    @abstractmethod
    def classify(self, text: str, context: str) -> ClassificationResult:
        """Classify a statement.

        Raises:
            ValidationError: If text is empty or context is unknown
            ClassificationError: If no classification can be determined
        """

    def classify_batch(self, items: Sequence[Tuple[str, str]], max_workers: int = 4) -> List[ClassificationResult]:
        """Classify many (text, context) pairs concurrently.

        Args:
            items: Statements with their declared context
            max_workers: Upper bound on concurrent classifications

        Returns:
            Results in input order
        """
        for text, context in items:
            validate_statement(text, context)
        if not items:
            return []

        logger.info(f'Batch classifying {len(items)} statement(s)')
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(items)))) as executor:
            return list(executor.map(lambda item: self.classify(*item), items))


class LLMContentClassifier(Classifier):
    """Language-model-backed classifier with strict output validation."""

    def __init__(self, llm: LanguageModelProvider, pipeline_config: Optional[PipelineConfig] = None):
        self.llm = llm
        self.pipeline_config = pipeline_config or PipelineConfig()

    def classify(self, text: str, context: str) -> ClassificationResult:
        validate_statement(text, context)
        logger.debug(f'Classifying content: "{text[:100]}"')

        prompt = CLASSIFICATION_PROMPT.format(context=context, content=text, examples=CLASSIFICATION_EXAMPLES)
        try:
            completion = self.llm.complete(prompt,
                                           temperature=self.pipeline_config.classifier_temperature,
                                           max_tokens=self.pipeline_config.classifier_max_tokens)
        except ProviderError as e:
            logger.error(f'Classification provider call failed: {e}')
            raise ClassificationError(f'Classification failed: {e}') from e

        try:
            data = parse_json_object(completion.text)
        except ParseError as e:
            logger.error(f'Failed to parse classification response: {e}')
            raise ClassificationError(f'Classification response was not valid JSON: {e}') from e

        label = str(data.get('classification', '')).strip().upper()
        if label not in Classification.__members__:
            raise ClassificationError(f'Invalid classification: {data.get("classification")!r}')

        classification = Classification(label)
        sub_type = data.get('subType') if classification == Classification.PROFILE else None
        if sub_type not in PROFILE_SUB_TYPES:
            sub_type = None

        result = ClassificationResult(classification=classification,
                                      confidence=_clamp_confidence(data.get('confidence'), 0.8),
                                      reasoning=str(data.get('reasoning') or 'Model classification'),
                                      sub_type=sub_type)
        logger.info(f'Classification: {result.classification.value} ({result.confidence:.2f})')
        return result


class RuleBasedClassifier(Classifier):
    """Deterministic classifier counting profile, future and past indicator phrases."""

    PROFILE_INDICATORS = ('i work at', 'i work for', 'i am', 'i\'m', 'my name is', 'i live', 'my birthday', 'my wife',
                          'my husband', 'my son', 'my daughter', 'my kids', 'my children', 'my doctor', 'my dentist',
                          'i prefer', 'started working at', 'new job', 'just joined')
    FUTURE_INDICATORS = ('next', 'tomorrow', 'will', 'going to', 'have to', 'need to', 'appointment', 'meeting with',
                         'scheduled', 'planning to', 'remind me', 'don\'t forget', 'upcoming')
    PAST_INDICATORS = ('yesterday', 'last', 'went', 'had', 'was', 'did', 'visited', 'met with', 'finished', 'completed',
                       'ate at', 'saw')

    SUB_TYPE_CUES = (
        ('service_providers', ('dentist', 'doctor', 'dr.', 'physician', 'therapist', 'lawyer', 'accountant', 'mechanic')),
        ('family_info', ('wife', 'husband', 'spouse', 'son', 'daughter', 'kids', 'children', 'married', 'partner')),
        ('work_info', ('work', 'job', 'company', 'employer', 'joined', 'position', 'role', 'hired')),
        ('preferences', ('prefer', 'favorite', 'favourite', 'vegetarian', 'vegan', 'allergic', 'love', 'hate')),
    )

    CONFIDENCE = 0.7

    def _sub_type(self, text: str) -> str:
        for sub_type, cues in self.SUB_TYPE_CUES:
            if any(contains_phrase(text, cue) for cue in cues):
                return sub_type
        return 'personal_info'

    def classify(self, text: str, context: str) -> ClassificationResult:
        validate_statement(text, context)

        profile_count = count_phrases(text, self.PROFILE_INDICATORS)
        future_count = count_phrases(text, self.FUTURE_INDICATORS)
        past_count = count_phrases(text, self.PAST_INDICATORS)
        logger.debug(f'Indicator counts: profile={profile_count} future={future_count} past={past_count}')

        if profile_count > future_count and profile_count > past_count:
            return ClassificationResult(classification=Classification.PROFILE,
                                        confidence=self.CONFIDENCE,
                                        reasoning='Rule-based: contains profile indicators',
                                        sub_type=self._sub_type(text))
        if future_count > past_count:
            return ClassificationResult(classification=Classification.EXPERIENCE,
                                        confidence=self.CONFIDENCE,
                                        reasoning='Rule-based: contains future event indicators')
        return ClassificationResult(classification=Classification.MEMORY,
                                    confidence=self.CONFIDENCE,
                                    reasoning='Rule-based: defaults to memory for past or ambiguous events')
