"""
Profile Extraction Service turning PROFILE statements into partial profile updates,
plus the profile document store and the resolver that answers profile questions.
"""

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..utils.config import PipelineConfig
from ..utils.date_resolution import match_month_day, normalize_calendar_date, resolve_past_date
from ..utils.errors import ParseError, ValidationError
from ..utils.json_utils import parse_json_object
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import PROFILES
from ..utils.providers import DocumentStore, LanguageModelProvider
from ..utils.timestamp_utils import to_iso, utcnow
from .content_classifier import Classification

logger = get_logger(__name__)

PROFILE_SECTIONS = ('personalInfo', 'workInfo', 'familyInfo', 'serviceProviders')
DATE_FIELDS = (('personalInfo', 'dateOfBirth'), ('workInfo', 'employment', 'startDate'))
PROFILE_META_FIELDS = ('id', 'owner_id', 'created_at', 'updated_at')
# (section, field) -> (shape, key a bare string is stored under)
RECORD_FIELDS = {
    ('personalInfo', 'location'): ('record', 'city'),
    ('workInfo', 'employment'): ('record', 'company'),
    ('familyInfo', 'spouse'): ('record', 'name'),
    ('familyInfo', 'children'): ('records', 'name'),
    ('serviceProviders', 'healthcare'): ('records', 'name'),
}

PROFILE_PROMPT = """Extract structured profile data from this user statement.

Content: "{content}"
Context: {context}
SubType: {sub_type}

Extract ONLY the explicitly stated information into this structure:

{{
  "personalInfo": {{
    "firstName": "string if mentioned",
    "lastName": "string if mentioned",
    "dateOfBirth": "YYYY-MM-DD, or --MM-DD when no year is stated",
    "location": {{"city": "string", "state": "string", "country": "string"}}
  }},
  "workInfo": {{
    "employment": {{
      "company": "string if mentioned (e.g., Microsoft, Google)",
      "position": "string if mentioned (e.g., Software Engineer)",
      "startDate": "YYYY-MM-DD if a start date is mentioned",
      "status": "employed|self_employed|student|retired if determinable",
      "type": "full_time|part_time|contract if determinable"
    }}
  }},
  "familyInfo": {{
    "spouse": {{"name": "string if spouse mentioned"}},
    "children": [{{"name": "string for each child mentioned"}}]
  }},
  "serviceProviders": {{
    "healthcare": [{{"type": "dentist|doctor|specialist", "name": "provider name", "practice": "practice name if mentioned"}}]
  }}
}}

Examples:
- "Started working at Microsoft last week" -> {{"workInfo": {{"employment": {{"company": "Microsoft"}}}}}}
- "My birthday is December 29th" -> {{"personalInfo": {{"dateOfBirth": "--12-29"}}}}
- "I live in Miami" -> {{"personalInfo": {{"location": {{"city": "Miami"}}}}}}
- "Dr. Smith is my new dentist" -> {{"serviceProviders": {{"healthcare": [{{"type": "dentist", "name": "Dr. Smith"}}]}}}}

Include ONLY fields that are explicitly mentioned; omit everything else. Return JSON only:
{{
  "profileUpdate": {{extracted data}},
  "confidence": 0.0-1.0,
  "extractedFields": ["list", "of", "field", "paths"]
}}"""


@dataclass
class ProfileExtraction:
    """Dotted field paths and the nested patch that sets them."""
    fields: List[str] = field(default_factory=list)
    patch: Dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0
    tokens_used: int = 0


def prune_patch(value: Any) -> Any:
    """Drop null, blank and empty values at every level; returns None when nothing remains."""
    if isinstance(value, dict):
        pruned = {}
        for key, item in value.items():
            item = prune_patch(item)
            if item is not None:
                pruned[key] = item
        return pruned or None
    if isinstance(value, list):
        items = [prune_patch(item) for item in value]
        items = [item for item in items if item is not None]
        return items or None
    if isinstance(value, str):
        return value.strip() or None
    return value


def field_paths(patch: Dict[str, Any], prefix: str = '') -> List[str]:
    """Dotted paths of every leaf in a patch; a list counts as one leaf."""
    paths = []
    for key in sorted(patch):
        path = f'{prefix}{key}'
        if isinstance(patch[key], dict):
            paths.extend(field_paths(patch[key], f'{path}.'))
        else:
            paths.append(path)
    return paths


def _normalise_dates(patch: Dict[str, Any]) -> Dict[str, Any]:
    for path in DATE_FIELDS:
        parent = patch
        for key in path[:-1]:
            parent = parent.get(key) if isinstance(parent, dict) else None
        if not isinstance(parent, dict) or path[-1] not in parent:
            continue
        normalised = normalize_calendar_date(parent[path[-1]])
        if normalised is None:
            logger.debug(f'Dropping unparseable {".".join(path)}: {parent[path[-1]]!r}')
            del parent[path[-1]]
        else:
            parent[path[-1]] = normalised
    return patch


def _as_record(value: Any, key: str) -> Optional[Dict[str, Any]]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        return {key: value}
    return None


def _as_records(value: Any, key: str) -> Optional[List[Dict[str, Any]]]:
    items = value if isinstance(value, list) else [value]
    records = [record for record in (_as_record(item, key) for item in items) if record is not None]
    return records or None


def _normalise_shapes(patch: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce record and record-list fields; a bare string becomes the record's main field."""
    for (section, name), (shape, key) in RECORD_FIELDS.items():
        parent = patch.get(section)
        if not isinstance(parent, dict) or name not in parent:
            continue
        coerced = _as_record(parent[name], key) if shape == 'record' else _as_records(parent[name], key)
        if coerced is None:
            logger.debug(f'Dropping malformed {section}.{name}: {parent[name]!r}')
            del parent[name]
        else:
            parent[name] = coerced
    return patch


def clean_patch(patch: Any) -> Dict[str, Any]:
    """Keep known sections, coerce record shapes, normalise dates and prune empty values."""
    if not isinstance(patch, dict):
        return {}
    patch = {key: copy.deepcopy(value) for key, value in patch.items() if key in PROFILE_SECTIONS and isinstance(value, dict)}
    patch = _normalise_shapes(prune_patch(patch) or {})
    return prune_patch(_normalise_dates(patch)) or {}


def _record_key(item: Any) -> Any:
    if isinstance(item, dict) and item.get('name'):
        return ('record', str(item.get('type', '')).lower(), str(item['name']).lower())
    return ('value', repr(item))


def _merge_lists(current: List[Any], incoming: List[Any]) -> List[Any]:
    merged = copy.deepcopy(current)
    for item in incoming:
        key = _record_key(item)
        for index, existing in enumerate(merged):
            if _record_key(existing) == key:
                if isinstance(existing, dict) and isinstance(item, dict):
                    merged[index] = deep_merge(existing, item)
                break
        else:
            merged.append(copy.deepcopy(item))
    return merged


def deep_merge(current: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    """Merge a patch into a profile at every nesting level.

    Scalars in the patch replace existing values; keys absent from the patch
    are kept. Lists are merged without duplicates (records with the same type
    and name are merged in place), so merging the same patch twice gives the
    same result as merging it once.
    """
    merged = copy.deepcopy(current)
    for key, value in patch.items():
        existing = merged.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            merged[key] = deep_merge(existing, value)
        elif isinstance(existing, list) and isinstance(value, list):
            merged[key] = _merge_lists(existing, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class RuleBasedProfileExtractor:
    """Deterministic extraction of common profile statements."""

    NAME = r"[A-Z][\w'&-]*(?:\s+[A-Z][\w'&-]*)*"
    PERSON = r"[A-Z][a-z'-]+"

    COMPANY_RE = re.compile(r"\b(?i:i work(?:ing)?\s+(?:at|for)|i'm working\s+(?:at|for)|started working\s+(?:at|for)|"
                            r"(?:just\s+)?joined|new job\s+at|employed\s+(?:at|by))\s+(" + NAME + r")")
    POSITION_RE = re.compile(r"\bas an?\s+([A-Za-z][A-Za-z ]+?)(?=\s+(?:at|for|with|since)\b|[.,!]|$)")
    LOCATION_RE = re.compile(r"\b(?i:i live|i'm living|i am living|i moved|we live|we moved|i'm based|i am based)\s+(?i:in|to)\s+("
                             + NAME + r")(?:,\s*([A-Z]{2}\b|[A-Z][a-z]+))?")
    NAME_RE = re.compile(r"\b(?i:my name is)\s+(" + PERSON + r")(?:\s+(" + PERSON + r"))?")
    SPOUSE_RE = (re.compile(r"\b(?i:my (?:wife|husband|spouse|partner)(?:'s name)? is)\s+(" + PERSON + r")"),
                 re.compile(r"\b(" + PERSON + r") is my (?:wife|husband|spouse|partner)\b"))
    CHILD_RE = (re.compile(r"\b(?i:my (?:son|daughter|child|kid)(?:'s name)? is)\s+(" + PERSON + r")"),
                re.compile(r"\b(" + PERSON + r") is my (?:son|daughter|child|kid)\b"))
    PROVIDER_TYPES = r'(dentist|doctor|physician|pediatrician|dermatologist|therapist|specialist|optometrist)'
    PROVIDER_RE = (re.compile(r"\b((?:Dr\.?|Doctor)\s+" + PERSON + r") is my (?:new\s+)?" + PROVIDER_TYPES),
                   re.compile(r"\b(?i:my (?:new\s+)?)" + PROVIDER_TYPES + r" is\s+((?:Dr\.?\s+)?" + PERSON + r")"))
    PRACTICE_RE = re.compile(r"\b(?:at|from)\s+(" + NAME + r")")

    def _healthcare(self, text: str) -> List[Dict[str, str]]:
        providers = []
        for index, pattern in enumerate(self.PROVIDER_RE):
            for match in pattern.finditer(text):
                name, provider_type = match.groups() if index == 0 else reversed(match.groups())
                provider_type = provider_type.lower()
                record = {
                    'type': provider_type if provider_type in ('dentist', 'doctor') else
                    ('doctor' if provider_type == 'physician' else 'specialist'),
                    'name': name.strip()
                }
                practice = self.PRACTICE_RE.search(text[match.end():])
                if practice:
                    record['practice'] = practice.group(1)
                providers.append(record)
        return providers

    def extract(self, text: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Extract a profile patch from a statement.

        Args:
            text: Statement text
            now: Reference time for relative start dates

        Returns:
            Cleaned nested patch (empty when nothing is recognised)
        """
        patch: Dict[str, Any] = {}

        match = self.COMPANY_RE.search(text)
        if match:
            employment = {'company': match.group(1), 'status': 'employed'}
            position = self.POSITION_RE.search(text)
            if position:
                employment['position'] = position.group(1).strip()
            if re.search(r'\b(?:started|joined)\b', text, re.I):
                start = resolve_past_date(text, now)
                if start is not None:
                    employment['startDate'] = start.date().isoformat()
            patch['workInfo'] = {'employment': employment}

        match = self.LOCATION_RE.search(text)
        if match:
            location = {'city': match.group(1)}
            if match.group(2):
                location['state'] = match.group(2)
            patch.setdefault('personalInfo', {})['location'] = location

        match = self.NAME_RE.search(text)
        if match:
            personal = patch.setdefault('personalInfo', {})
            personal['firstName'] = match.group(1)
            if match.group(2):
                personal['lastName'] = match.group(2)

        if re.search(r'\b(?:birthday|born on|date of birth)\b', text, re.I):
            explicit = match_month_day(text)
            if explicit:
                month, day, year, _ = explicit
                patch.setdefault('personalInfo', {})['dateOfBirth'] = (f'{year:04d}-{month:02d}-{day:02d}'
                                                                       if year else f'--{month:02d}-{day:02d}')

        for pattern in self.SPOUSE_RE:
            match = pattern.search(text)
            if match:
                patch.setdefault('familyInfo', {})['spouse'] = {'name': match.group(1)}
                break

        children = [{'name': match.group(1)} for pattern in self.CHILD_RE for match in pattern.finditer(text)]
        if children:
            patch.setdefault('familyInfo', {})['children'] = _merge_lists([], children)

        healthcare = self._healthcare(text)
        if healthcare:
            patch['serviceProviders'] = {'healthcare': _merge_lists([], healthcare)}

        return clean_patch(patch)


class ProfileExtractor:
    """Extracts profile patches with a language model, falling back to the rule-based extractor."""

    def __init__(self,
                 llm: LanguageModelProvider,
                 pipeline_config: Optional[PipelineConfig] = None,
                 fallback: Optional[RuleBasedProfileExtractor] = None):
        self.llm = llm
        self.pipeline_config = pipeline_config or PipelineConfig()
        self.fallback = fallback or RuleBasedProfileExtractor()

    def extract(self, text: str, classification: Classification, context: str, sub_type: Optional[str] = None) -> ProfileExtraction:
        """
        Extract a profile patch from a PROFILE statement.

        Only confidently-set fields are returned: null and empty values are
        pruned and the field list is recomputed from what survives.

        Args:
            text: Statement text
            classification: Must be PROFILE
            context: Declared context
            sub_type: Classifier sub-type (work_info, personal_info, ...)

        Returns:
            ProfileExtraction (fields may be empty)

        Raises:
            ValidationError: If the classification is not PROFILE or text is empty
            ProviderError: If the language model call fails
        """
        if classification not in (Classification.PROFILE, Classification.PROFILE.value):
            raise ValidationError(f'Profile extraction requires PROFILE classification, got {classification}')
        if not text or not text.strip():
            raise ValidationError('Text must not be empty')

        prompt = PROFILE_PROMPT.format(content=text, context=context, sub_type=sub_type or 'unknown')
        completion = self.llm.complete(prompt,
                                       temperature=self.pipeline_config.classifier_temperature,
                                       max_tokens=self.pipeline_config.extraction_max_tokens)

        try:
            data = parse_json_object(completion.text)
            update = data.get('profileUpdate', {})
            if not isinstance(update, dict):
                raise ParseError(f'profileUpdate must be an object, got {type(update).__name__}')
        except ParseError as e:
            logger.warning(f'Profile extraction response unparseable, using rule-based extraction: {e}')
            patch = self.fallback.extract(text)
            return ProfileExtraction(fields=field_paths(patch),
                                     patch=patch,
                                     confidence=0.6 if patch else 0.0,
                                     tokens_used=completion.tokens_used)

        patch = clean_patch(update)
        try:
            confidence = max(0.0, min(1.0, float(data.get('confidence', 0.8))))
        except (TypeError, ValueError):
            confidence = 0.8

        extraction = ProfileExtraction(fields=field_paths(patch),
                                       patch=patch,
                                       confidence=confidence if patch else 0.0,
                                       tokens_used=completion.tokens_used)
        logger.info(f'Extracted {len(extraction.fields)} profile field(s): {", ".join(extraction.fields)}')
        return extraction


class ProfileStore:
    """One profile document per owner, updated only through deep merges."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, owner_id: str) -> Dict[str, Any]:
        """Profile sections for an owner (empty dict when no profile exists)."""
        document = self.store.get(PROFILES, owner_id) or {}
        return {key: value for key, value in document.items() if key not in PROFILE_META_FIELDS}

    def apply_patch(self, owner_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep-merge a patch into the owner's profile.

        Args:
            owner_id: Profile owner
            patch: Nested partial profile

        Returns:
            The merged profile sections

        Raises:
            ValidationError: If owner_id is empty
        """
        if not owner_id:
            raise ValidationError('owner_id is required')

        patch = clean_patch(patch)
        current = self.get(owner_id)
        if not patch:
            logger.debug(f'Empty profile patch for {owner_id}, nothing to apply')
            return current

        merged = deep_merge(current, patch)
        if merged == current:
            logger.debug(f'Profile patch for {owner_id} changes nothing')
            return merged

        now = to_iso(utcnow())
        changed = {section: merged[section] for section in patch}
        if self.store.get(PROFILES, owner_id) is None:
            self.store.insert(PROFILES, {'owner_id': owner_id, 'created_at': now, 'updated_at': now, **merged}, doc_id=owner_id)
        else:
            self.store.patch(PROFILES, owner_id, {**changed, 'updated_at': now})

        logger.info(f'Applied profile update for {owner_id}: {", ".join(field_paths(patch))}')
        return merged


@dataclass
class ProfileAnswer:
    """A profile fact that directly answers a question."""
    field: str
    value: Any
    answer: str


def _lookup(profile: Dict[str, Any], path: str) -> Any:
    value: Any = profile
    for key in path.split('.'):
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def _format_date(value: str) -> str:
    month_day = value[-5:]
    try:
        label = datetime.strptime(f'2000-{month_day}', '%Y-%m-%d').strftime('%B %d').replace(' 0', ' ')
    except ValueError:
        return value
    return label if value.startswith('--') else f'{label}, {value[:4]}'


class ProfileQueryResolver:
    """Maps profile-style questions to populated profile fields."""

    # (question patterns, field path, provider type filter)
    RULES: Tuple[Tuple[Tuple[str, ...], str, Optional[str]], ...] = (
        ((r'\bwhere do i (?:currently )?work\b', r'\bwhere am i (?:currently )?working\b', r'\bwhat company\b',
          r'\bwho do i (?:currently )?work for\b', r'\bwhere i (?:currently )?work\b', r'\bwho is my employer\b',
          r'\bmy (?:current )?(?:employer|company)\b'), 'workInfo.employment.company', None),
        ((r'\bmy (?:job title|position|role)\b', r'\bwhat do i do for (?:work|a living)\b'), 'workInfo.employment.position', None),
        ((r'\bwhere do i live\b', r'\bwhere i live\b', r'\bmy (?:current )?location\b', r'\bwhat city\b',
          r'\bwhere am i (?:based|living)\b', r'\bmy (?:home )?address\b'), 'personalInfo.location', None),
        ((r'\bmy birthday\b', r'\bwhen (?:was|am) i born\b', r'\bmy date of birth\b'), 'personalInfo.dateOfBirth', None),
        ((r'\bwho(?:\'s| is) my (?:wife|husband|spouse|partner)\b', r'\bmy (?:wife|husband|spouse|partner)\'s name\b',
          r'\bwho am i married to\b', r'\bmy spouse\b'), 'familyInfo.spouse.name', None),
        ((r'\bwho are my (?:kids|children)\b', r'\bmy (?:kids|children)\'s names?\b', r'\bhow many (?:kids|children)\b'),
         'familyInfo.children', None),
        ((r'\b(?:who|what)(?:\'s| is) (?:the name of )?my dentist\b', r'\bmy dentist\'s name\b'), 'serviceProviders.healthcare',
         'dentist'),
        ((r'\b(?:who|what)(?:\'s| is) (?:the name of )?my doctor\b', r'\bmy doctor\'s name\b'), 'serviceProviders.healthcare',
         'doctor'),
    )

    def __init__(self, profile_store: ProfileStore):
        self.profile_store = profile_store

    @staticmethod
    def _render(path: str, value: Any) -> Optional[str]:
        """Answer text for a populated field, or None when the stored shape cannot be rendered."""
        if path == 'personalInfo.location':
            if not isinstance(value, dict):
                return None
            place = ', '.join(str(value[key]) for key in ('city', 'state', 'country') if value.get(key))
            return f'You live in {place}' if place else None
        if path == 'familyInfo.children':
            if not isinstance(value, list):
                return None
            names = [str(child['name']) for child in value if isinstance(child, dict) and child.get('name')]
            return f'Your children: {", ".join(names)}' if names else None
        if path == 'serviceProviders.healthcare':
            if not isinstance(value, list):
                return None
            providers = [provider for provider in value if isinstance(provider, dict) and provider.get('name')]
            if not providers:
                return None
            entries = [
                str(provider['name']) + (f' at {provider["practice"]}' if provider.get('practice') else '') for provider in providers
            ]
            return f'Your {providers[0].get("type", "provider")} is {", ".join(entries)}'

        if isinstance(value, (dict, list)):
            return None
        if path == 'workInfo.employment.company':
            return f'You work at {value}'
        if path == 'workInfo.employment.position':
            return f'Your position is {value}'
        if path == 'personalInfo.dateOfBirth':
            return f'Your birthday is {_format_date(str(value))}'
        if path == 'familyInfo.spouse.name':
            return f'Your spouse is {value}'
        return None

    def match_field(self, query: str) -> Optional[Tuple[str, Optional[str]]]:
        """Profile field a question asks about, regardless of whether it is populated."""
        lowered = (query or '').lower()
        for patterns, path, provider_type in self.RULES:
            if any(re.search(pattern, lowered) for pattern in patterns):
                return path, provider_type
        return None

    def resolve(self, query: str, owner_id: str) -> Optional[ProfileAnswer]:
        """
        Answer a question from the owner's profile.

        Returns:
            ProfileAnswer when the question targets a populated profile field, None otherwise
        """
        matched = self.match_field(query)
        if matched is None:
            return None

        path, provider_type = matched
        value = _lookup(self.profile_store.get(owner_id), path)
        if provider_type and isinstance(value, list):
            value = [item for item in value if isinstance(item, dict) and item.get('type') == provider_type and item.get('name')]
        if not value:
            logger.debug(f'Profile field {path} not populated for {owner_id}')
            return None

        answer = self._render(path, value)
        if answer is None:
            return None
        logger.debug(f'Resolved "{query}" from profile field {path}')
        return ProfileAnswer(field=path, value=value, answer=answer)
