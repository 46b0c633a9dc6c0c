"""
Task Store for scheduled items and the detector that derives tasks from
future-dated statements.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..models.core import TASK_STATUSES, Task
from ..utils.config import CONTEXTS
from ..utils.date_resolution import resolve_future_date
from ..utils.errors import DocumentStoreError, ValidationError
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import TASKS
from ..utils.providers import DocumentStore
from ..utils.text_analysis import contains_phrase, extract_participants
from ..utils.timestamp_utils import to_iso, utcnow

logger = get_logger(__name__)

OPEN_STATUSES = ('planned', 'in_progress')


@dataclass(frozen=True)
class EventPattern:
    event_type: str
    keywords: tuple
    title: str
    follow_up_hours: int


# Checked in order; the first pattern with a matching keyword wins
EVENT_PATTERNS = (
    EventPattern('dentist', ('dentist', 'dental'), 'Dentist appointment', 4),
    EventPattern('doctor', ('doctor', 'physician', 'medical appointment', 'checkup'), 'Doctor appointment', 4),
    EventPattern('restaurant', ('restaurant', 'dinner', 'lunch', 'breakfast', 'brunch', 'eating out'), 'Restaurant visit', 18),
    EventPattern('meeting', ('meeting', 'conference', 'standup', 'sync'), 'Meeting', 2),
    EventPattern('travel', ('travel', 'trip', 'vacation', 'flight', 'fly to'), 'Travel', 24),
    EventPattern('call', ('call', 'phone'), 'Call', 6),
    EventPattern('deadline', ('deadline', 'due', 'finish', 'submit'), 'Deadline', 6),
    EventPattern('reminder', ('remind', 'don\'t forget', 'renew', 'need to', 'have to'), 'Reminder', 6),
)
DEFAULT_EVENT_TYPE = 'event'
DEFAULT_FOLLOW_UP_HOURS = 6


@dataclass
class DetectedExperience:
    """Structured view of a future-dated statement."""
    event_type: str
    title: str
    description: str
    participants: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    due_date: Optional[datetime] = None
    timeframe: str = ''
    follow_up_at: Optional[datetime] = None


def build_tags(event_type: str, participants: List[str]) -> List[str]:
    """Event type, lowercase participant names and participant:<name> markers."""
    tags = [event_type]
    for name in participants:
        for tag in (name.lower(), f'participant:{name}'):
            if tag not in tags:
                tags.append(tag)
    return tags


class ExperienceDetector:
    """Detects event type, participants and due date in an EXPERIENCE statement."""

    def _pattern(self, text: str) -> Optional[EventPattern]:
        for pattern in EVENT_PATTERNS:
            if any(contains_phrase(text, keyword) for keyword in pattern.keywords):
                return pattern
        return None

    def detect(self, text: str, now: Optional[datetime] = None) -> Optional[DetectedExperience]:
        """
        Detect a schedulable event.

        Args:
            text: Statement text
            now: Reference time for relative dates

        Returns:
            DetectedExperience, or None when neither a date nor a participant is mentioned
        """
        mention = resolve_future_date(text, now)
        participants = extract_participants(text)
        if mention.due_date is None and not participants:
            logger.debug(f'No date or participant detected in "{text[:100]}"')
            return None

        pattern = self._pattern(text)
        event_type = pattern.event_type if pattern else DEFAULT_EVENT_TYPE
        follow_up_hours = pattern.follow_up_hours if pattern else DEFAULT_FOLLOW_UP_HOURS
        title = pattern.title if pattern else 'Event'
        if participants:
            title = f'{title} with {" and ".join(participants)}'

        follow_up_at = mention.due_date + timedelta(hours=follow_up_hours) if mention.due_date else None
        experience = DetectedExperience(event_type=event_type,
                                        title=title,
                                        description=text,
                                        participants=participants,
                                        tags=build_tags(event_type, participants),
                                        due_date=mention.due_date,
                                        timeframe=mention.timeframe,
                                        follow_up_at=follow_up_at)
        logger.debug(f'Detected {event_type} experience (timeframe: {mention.timeframe or "none"}, '
                     f'participants: {participants})')
        return experience


class TaskStore:
    """Mutable scheduled items; completed tasks are frozen."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def create(self,
               owner_id: str,
               title: str,
               description: str,
               context: str,
               event_type: str,
               participants: Optional[List[str]] = None,
               tags: Optional[List[str]] = None,
               due_date: Optional[datetime] = None,
               timeframe: str = '',
               linked_memory_id: Optional[str] = None,
               follow_up_at: Optional[datetime] = None,
               created_at: Optional[datetime] = None) -> Task:
        """
        Create a planned task.

        Raises:
            ValidationError: If owner, title or context are invalid
        """
        if not owner_id:
            raise ValidationError('owner_id is required')
        if not title or not title.strip():
            raise ValidationError('Task title must not be empty')
        if context not in CONTEXTS:
            raise ValidationError(f'Unknown context: {context}')

        now = created_at or utcnow()
        task = Task(id=str(uuid.uuid4()),
                    owner_id=owner_id,
                    title=title,
                    description=description,
                    context=context,
                    event_type=event_type,
                    participants=list(participants or []),
                    tags=list(dict.fromkeys(tags or [])),
                    due_date=due_date,
                    timeframe=timeframe,
                    linked_memory_id=linked_memory_id,
                    status='planned',
                    follow_up_at=follow_up_at,
                    created_at=now,
                    updated_at=now)

        self.store.insert(TASKS, task.to_document(), doc_id=task.id)
        logger.debug(f'Created task {task.id} for {owner_id}: {title}')
        return task

    def get(self, task_id: str) -> Optional[Task]:
        document = self.store.get(TASKS, task_id)
        return Task.from_document(document) if document else None

    def update(self, task_id: str, status: Optional[str] = None, due_date: Optional[datetime] = None) -> Task:
        """
        Update a task's status or due date.

        Raises:
            ValidationError: If the status is unknown or the task is already completed
            DocumentStoreError: If the task does not exist
        """
        task = self.get(task_id)
        if task is None:
            raise DocumentStoreError(f'Task {task_id} not found')
        if task.status == 'completed':
            raise ValidationError(f'Task {task_id} is completed and can no longer be updated')
        if status is not None and status not in TASK_STATUSES:
            raise ValidationError(f'Unknown task status: {status}')

        updates: Dict[str, Any] = {}
        if status is not None:
            task.status = status
            updates['status'] = status
        if due_date is not None:
            task.due_date = due_date
            updates['due_date'] = to_iso(due_date)
        if not updates:
            return task

        task.updated_at = utcnow()
        updates['updated_at'] = to_iso(task.updated_at)
        self.store.patch(TASKS, task_id, updates)
        logger.info(f'Updated task {task_id}: {", ".join(sorted(updates))}')
        return task

    def list_for_owner(self, owner_id: str, context: Optional[str] = None, include_completed: bool = False) -> List[Task]:
        """Tasks for an owner, oldest first; open tasks only unless include_completed is set."""
        filters: Dict[str, Any] = {'owner_id': owner_id}
        if context:
            filters['context'] = context
        if not include_completed:
            filters['status'] = list(OPEN_STATUSES)
        documents = self.store.query(TASKS, filters, sort=[('created_at', 'asc')])
        return [Task.from_document(document) for document in documents]
