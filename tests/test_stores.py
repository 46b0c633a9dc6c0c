"""
Tests for the memory store, task store and experience detection.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW
from lifeos_memory.services.memory_store import MemoryStore
from lifeos_memory.services.metadata_extraction import ExtractedMetadata
from lifeos_memory.services.task_store import ExperienceDetector, TaskStore, build_tags
from lifeos_memory.utils.errors import DocumentStoreError, ValidationError
from lifeos_memory.utils.opensearch_client import MEMORIES, TASKS


def metadata(**overrides):
    values = dict(entities=['Sarah'], keywords=['dinner'], memory_type='experience', importance=6, sentiment=0.4, summary='Dinner')
    values.update(overrides)
    return ExtractedMetadata(**values)


class TestMemoryStore:

    def test_add_stores_document(self, store):
        memory = MemoryStore(store).add('user-1', 'Had dinner with Sarah', 'personal', [0.1, 0.2], metadata(), created_at=NOW)

        document = store.get(MEMORIES, memory.id)
        assert document['owner_id'] == 'user-1'
        assert document['source_type'] == 'message'
        assert document['source_id'] == memory.id
        assert document['created_at'] == '2026-10-19T10:00:00+00:00'
        assert document['is_active'] is True
        assert document['entities'] == ['Sarah']

    def test_add_clamps_metadata(self, store):
        memory = MemoryStore(store).add('user-1', 'Text', 'work', [], metadata(importance=42, sentiment=-9, memory_type='errand'))

        assert memory.importance == 10
        assert memory.sentiment == -1.0
        assert memory.memory_type == 'fact'

    @pytest.mark.parametrize('owner,content,context', [('', 'Text', 'work'), ('user-1', ' ', 'work'), ('user-1', 'Text', 'school')])
    def test_add_validates_input(self, store, owner, content, context):
        with pytest.raises(ValidationError):
            MemoryStore(store).add(owner, content, context, [], metadata())
        assert store.writes == []

    def test_corrective_patch(self, store):
        memories = MemoryStore(store)
        memory = memories.add('user-1', 'Had dinner with Sarah', 'personal', [0.1], metadata())

        patched = memories.patch(memory.id, {'importance': 0, 'summary': 'Dinner with Sarah'})

        assert patched.importance == 1
        assert patched.summary == 'Dinner with Sarah'
        assert patched.updated_at is not None
        stored = memories.get(memory.id)
        assert stored.importance == 1
        assert stored.content == 'Had dinner with Sarah'

    @pytest.mark.parametrize('fields', [{'content': 'rewritten'}, {'embedding': [1.0]}, {'owner_id': 'user-2'}])
    def test_immutable_fields_cannot_be_patched(self, store, fields):
        memories = MemoryStore(store)
        memory = memories.add('user-1', 'Had dinner with Sarah', 'personal', [0.1], metadata())

        with pytest.raises(ValidationError):
            memories.patch(memory.id, fields)

    def test_patch_missing_memory(self, store):
        with pytest.raises(DocumentStoreError):
            MemoryStore(store).patch('missing', {'summary': 'x'})

    def test_list_for_owner_newest_first(self, store):
        memories = MemoryStore(store)
        older = memories.add('user-1', 'First', 'work', [], metadata(), created_at=NOW - timedelta(days=2))
        newer = memories.add('user-1', 'Second', 'work', [], metadata(), created_at=NOW)
        memories.add('user-1', 'Family', 'family', [], metadata(), created_at=NOW)
        memories.add('user-2', 'Other owner', 'work', [], metadata(), created_at=NOW)

        assert [memory.id for memory in memories.list_for_owner('user-1', context='work')] == [newer.id, older.id]
        assert len(memories.list_for_owner('user-1')) == 3
        assert len(memories.list_for_owner('user-1', limit=1)) == 1


class TestExperienceDetector:

    def test_meeting_with_participant(self):
        experience = ExperienceDetector().detect('Meeting with Sarah next Friday at 2pm downtown', NOW)

        assert experience.event_type == 'meeting'
        assert experience.title == 'Meeting with Sarah'
        assert experience.participants == ['Sarah']
        assert experience.tags == ['meeting', 'sarah', 'participant:Sarah']
        assert experience.due_date == datetime(2026, 10, 23, 14, 0, tzinfo=timezone.utc)
        assert experience.follow_up_at == datetime(2026, 10, 23, 16, 0, tzinfo=timezone.utc)

    def test_first_matching_pattern_wins(self):
        # 'dentist' is checked before 'reminder'
        experience = ExperienceDetector().detect('Remind me about the dentist tomorrow', NOW)

        assert experience.event_type == 'dentist'
        assert experience.title == 'Dentist appointment'
        assert experience.follow_up_at == experience.due_date + timedelta(hours=4)

    def test_participant_without_date(self):
        experience = ExperienceDetector().detect('Planning a trip with Bob', NOW)

        assert experience.event_type == 'travel'
        assert experience.due_date is None
        assert experience.follow_up_at is None

    def test_unknown_event_type(self):
        experience = ExperienceDetector().detect('Something on Saturday', NOW)

        assert experience.event_type == 'event'
        assert experience.title == 'Event'
        assert experience.follow_up_at == experience.due_date + timedelta(hours=6)

    def test_nothing_schedulable(self):
        assert ExperienceDetector().detect('Need more sleep', NOW) is None


def test_build_tags_deduplicates():
    assert build_tags('call', ['Sarah', 'sarah']) == ['call', 'sarah', 'participant:Sarah', 'participant:sarah']


class TestTaskStore:

    def create(self, tasks, owner='user-1', **overrides):
        values = dict(title='Meeting with Sarah', description='Meeting with Sarah next Friday', context='work', event_type='meeting')
        values.update(overrides)
        return tasks.create(owner, **values)

    def test_create_defaults_to_planned(self, store):
        task = self.create(TaskStore(store), tags=['meeting', 'meeting', 'sarah'], due_date=NOW)

        document = store.get(TASKS, task.id)
        assert document['status'] == 'planned'
        assert document['tags'] == ['meeting', 'sarah']
        assert document['due_date'] == '2026-10-19T10:00:00+00:00'

    def test_create_uses_given_creation_time(self, store):
        created_at = NOW - timedelta(hours=2)
        task = self.create(TaskStore(store), created_at=created_at)

        assert task.created_at == task.updated_at == created_at
        assert store.get(TASKS, task.id)['created_at'] == '2026-10-19T08:00:00+00:00'

    def test_update_status_and_due_date(self, store):
        tasks = TaskStore(store)
        task = self.create(tasks)
        new_due = NOW + timedelta(days=3)

        updated = tasks.update(task.id, status='in_progress', due_date=new_due)

        assert updated.status == 'in_progress'
        assert tasks.get(task.id).due_date == new_due

    def test_completed_task_is_frozen(self, store):
        tasks = TaskStore(store)
        task = self.create(tasks)
        tasks.update(task.id, status='completed')

        with pytest.raises(ValidationError):
            tasks.update(task.id, status='planned')

    def test_unknown_status(self, store):
        tasks = TaskStore(store)
        task = self.create(tasks)
        with pytest.raises(ValidationError):
            tasks.update(task.id, status='done')

    def test_update_missing_task(self, store):
        with pytest.raises(DocumentStoreError):
            TaskStore(store).update('missing', status='completed')

    def test_update_without_changes_writes_nothing(self, store):
        tasks = TaskStore(store)
        task = self.create(tasks)
        tasks.update(task.id)
        assert [write[0] for write in store.writes] == ['insert']

    def test_list_for_owner_hides_closed_tasks(self, store):
        tasks = TaskStore(store)
        open_task = self.create(tasks)
        done = self.create(tasks, title='Call Bob')
        cancelled = self.create(tasks, title='Lunch')
        self.create(tasks, owner='user-2')
        tasks.update(done.id, status='completed')
        tasks.update(cancelled.id, status='cancelled')

        assert [task.id for task in tasks.list_for_owner('user-1')] == [open_task.id]
        assert len(tasks.list_for_owner('user-1', include_completed=True)) == 3
        assert tasks.list_for_owner('user-1', context='family') == []
