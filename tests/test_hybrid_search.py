"""
Tests for task-first hybrid disambiguation.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import NOW
from lifeos_memory.services.enhanced_search import EnhancedSearchEngine
from lifeos_memory.services.hybrid_search import HybridDisambiguationSearch, task_match_count
from lifeos_memory.services.memory_store import MemoryStore
from lifeos_memory.services.metadata_extraction import ExtractedMetadata
from lifeos_memory.services.profile_extraction import ProfileQueryResolver, ProfileStore
from lifeos_memory.services.task_store import TaskStore, build_tags
from lifeos_memory.models.core import Task

SARAH_MEETING = 'Meeting with Sarah next Friday at 2pm downtown'
FRIDAY_2PM = datetime(2026, 10, 23, 14, 0, tzinfo=timezone.utc)


@pytest.fixture
def memories(store):
    return MemoryStore(store)


@pytest.fixture
def tasks(store):
    return TaskStore(store)


@pytest.fixture
def engine(embedder, memories, store):
    return EnhancedSearchEngine(embedder, memories, ProfileQueryResolver(ProfileStore(store)))


@pytest.fixture
def hybrid(tasks, engine):
    return HybridDisambiguationSearch(tasks, engine)


def add_memory(memories, embedder, content, entities=()):
    metadata = ExtractedMetadata(entities=list(entities), keywords=[], memory_type='experience', summary=content)
    return memories.add('user-1', content, 'work', embedder.embed_document(content), metadata, created_at=NOW)


def add_task(tasks, participants, event_type='meeting', due_date=None, linked_memory_id=None, title=None):
    title = title or f'{event_type.capitalize()} with {" and ".join(participants)}'
    return tasks.create('user-1',
                        title=title,
                        description=title,
                        context='work',
                        event_type=event_type,
                        participants=participants,
                        tags=build_tags(event_type, participants),
                        due_date=due_date,
                        linked_memory_id=linked_memory_id)


def test_task_match_count():
    task = Task(id='t1',
                owner_id='user-1',
                title='Lunch with Dr. Smith',
                description='',
                context='work',
                event_type='restaurant',
                participants=['Sarah Connor'],
                tags=['restaurant', 'bob'])

    assert task_match_count(task, ['Sarah']) == 1
    assert task_match_count(task, ['Bob']) == 1
    assert task_match_count(task, ['Dr. Smith']) == 1
    assert task_match_count(task, ['Alice', 'Sarah', 'Bob']) == 2
    assert task_match_count(task, ['Alice']) == 0


class TestHybridSearch:

    def test_scheduled_task_precedes_memories(self, hybrid, tasks, memories, embedder):
        linked = add_memory(memories, embedder, SARAH_MEETING, entities=['Sarah'])
        other = add_memory(memories, embedder, 'Had a meeting with Sarah about the budget', entities=['Sarah'])
        task = add_task(tasks, ['Sarah'], due_date=FRIDAY_2PM, linked_memory_id=linked.id)

        results = hybrid.search('When is my meeting with Sarah next Friday?', 'user-1', threshold=0.0, now=NOW)

        assert results[0].id == task.id
        assert results[0].source == 'task'
        assert results[0].final_score == 1.0
        assert results[0].metadata['due_date'] == '2026-10-23T14:00:00+00:00'
        assert results[0].metadata['linked_memory_id'] == linked.id
        ids = [result.id for result in results]
        assert linked.id not in ids
        assert other.id in ids

    def test_no_entities_returns_fused_results_unchanged(self, hybrid, engine, tasks, memories, embedder):
        add_task(tasks, ['Sarah'], due_date=FRIDAY_2PM)
        add_memory(memories, embedder, 'Weekly planning meeting notes')

        query = 'what meetings do I have'
        assert hybrid.search(query, 'user-1', threshold=0.0, now=NOW) == engine.search(query, 'user-1', threshold=0.0, now=NOW)

    def test_unmatched_entities_return_fused_results(self, hybrid, engine, tasks, memories, embedder):
        add_task(tasks, ['Sarah'], due_date=FRIDAY_2PM)
        add_memory(memories, embedder, 'Coffee with Bob', entities=['Bob'])

        query = 'When did I see Bob?'
        assert hybrid.search(query, 'user-1', threshold=0.0, now=NOW) == engine.search(query, 'user-1', threshold=0.0, now=NOW)

    def test_tasks_ordered_by_match_count_then_due_date(self, hybrid, tasks):
        sarah_late = add_task(tasks, ['Sarah'], due_date=FRIDAY_2PM + timedelta(days=7))
        sarah_undated = add_task(tasks, ['Sarah'], event_type='call')
        both = add_task(tasks, ['Sarah', 'Bob'], event_type='restaurant', due_date=FRIDAY_2PM + timedelta(days=30))
        sarah_soon = add_task(tasks, ['Sarah'], due_date=FRIDAY_2PM)

        results = hybrid.search('Lunch with Sarah and Bob', 'user-1', now=NOW)

        assert [result.id for result in results[:4]] == [both.id, sarah_soon.id, sarah_late.id, sarah_undated.id]
        assert results[0].final_score == 1.0
        assert results[1].final_score == 0.5

    def test_closed_tasks_are_ignored(self, hybrid, tasks):
        task = add_task(tasks, ['Sarah'], due_date=FRIDAY_2PM)
        tasks.update(task.id, status='completed')

        assert all(result.source != 'task' for result in hybrid.search('Meeting with Sarah', 'user-1', now=NOW))

    def test_limit_applies_to_combined_results(self, hybrid, tasks, memories, embedder):
        for _ in range(3):
            add_task(tasks, ['Sarah'], due_date=FRIDAY_2PM)
        add_memory(memories, embedder, 'Meeting with Sarah went well', entities=['Sarah'])

        results = hybrid.search('Meeting with Sarah', 'user-1', limit=2, now=NOW)

        assert len(results) == 2
        assert all(result.source == 'task' for result in results)

    def test_linked_memories_removed_without_shortening_results(self, hybrid, tasks, memories, embedder):
        first_linked = add_memory(memories, embedder, 'Meeting with Sarah on Friday', entities=['Sarah'])
        second_linked = add_memory(memories, embedder, 'Meeting with Sarah on Monday', entities=['Sarah'])
        others = [add_memory(memories, embedder, f'Meeting with Sarah, notes {index}', entities=['Sarah']) for index in range(2)]
        add_task(tasks, ['Sarah'], due_date=FRIDAY_2PM, linked_memory_id=first_linked.id)
        add_task(tasks, ['Sarah'], due_date=FRIDAY_2PM + timedelta(days=3), linked_memory_id=second_linked.id)

        results = hybrid.search('Meeting with Sarah', 'user-1', limit=3, threshold=0.0, now=NOW)

        assert [result.source for result in results] == ['task', 'task', 'memory']
        assert results[2].id in [memory.id for memory in others]
