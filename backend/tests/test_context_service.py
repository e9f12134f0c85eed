"""
Tests for AI context gathering and the prompt formatting built on it.
"""
from datetime import timedelta

import pytest

from onyx_api.core.errors import NotFoundError
from onyx_api.core.timeutil import utcnow
from onyx_api.models import Note, Subtask, Task, TaskAIMessage
from onyx_api.services.context_service import ContextService, ViewContext, get_depth_limits
from onyx_api.services.prompt_utils import (
    format_assistant_context,
    format_retrieved_context,
    format_task_context,
)


def test_unknown_depth_falls_back_to_minimal():
    assert get_depth_limits("bogus") == get_depth_limits("minimal")
    assert get_depth_limits("comprehensive").notes == 25


class TestTaskContext:
    async def _seed(self, db_session, task, notes=0, messages=0):
        start = utcnow() - timedelta(hours=1)
        for i in range(notes):
            db_session.add(Note(
                user_id=task.user_id, task_id=task.id, content=f"note {i}",
                created_at=start + timedelta(minutes=i),
            ))
        for i in range(messages):
            db_session.add(TaskAIMessage(
                user_id=task.user_id, task_id=task.id, message=f"turn {i}",
                from_user=i % 2 == 0, from_ai=i % 2 == 1,
                created_at=start + timedelta(minutes=i),
            ))
        await db_session.commit()

    async def test_minimal_depth_limits(self, db_session, test_task):
        await self._seed(db_session, test_task, notes=5, messages=6)

        context = await ContextService(db_session).gather_task_context(
            test_task.user_id, test_task.id, "minimal"
        )

        # Newest notes first
        assert [n.content for n in context.notes] == ["note 4", "note 3", "note 2"]
        # Last three turns, oldest first
        assert [m.message for m in context.message_history] == ["turn 3", "turn 4", "turn 5"]
        assert context.folder.name == "Work"
        assert context.metadata["total_notes"] == 5
        assert context.metadata["notes_included"] == 3
        assert context.metadata["total_messages"] == 6
        assert context.metadata["messages_included"] == 3

    async def test_full_depth_includes_more(self, db_session, test_task):
        await self._seed(db_session, test_task, notes=5)
        context = await ContextService(db_session).gather_task_context(test_task.user_id, test_task.id, "full")
        assert len(context.notes) == 5

    async def test_deleted_rows_are_excluded(self, db_session, test_task):
        db_session.add_all([
            Subtask(user_id=test_task.user_id, task_id=test_task.id, title="Live"),
            Subtask(user_id=test_task.user_id, task_id=test_task.id, title="Gone", deleted_at=utcnow()),
        ])
        await db_session.commit()

        context = await ContextService(db_session).gather_task_context(test_task.user_id, test_task.id)

        assert [s.title for s in context.subtasks] == ["Live"]

    async def test_other_users_task_is_not_found(self, db_session, test_task, other_user):
        with pytest.raises(NotFoundError):
            await ContextService(db_session).gather_task_context(other_user.user_id, test_task.id)


class TestAssistantContext:
    async def test_visible_ids_narrow_the_working_set(self, db_session, test_task, test_user):
        other = Task(user_id=test_user.user_id, title="Water plants", completed_at=utcnow())
        db_session.add(other)
        await db_session.commit()

        context = await ContextService(db_session).gather_assistant_context(
            test_user.user_id,
            ViewContext(visible_task_ids=[test_task.id], current_view="today"),
        )

        assert [t.title for t in context.visible_tasks] == ["Complete quarterly report"]
        assert context.user_stats == {"pending_tasks": 1, "completed_tasks": 1, "total_tasks": 2}
        assert context.view_info["current_view"] == "today"
        assert len(context.recent_activity) == 2

    async def test_defaults_to_recent_tasks(self, db_session, test_task, test_user):
        context = await ContextService(db_session).gather_assistant_context(test_user.user_id)
        assert [t.id for t in context.visible_tasks] == [test_task.id]
        assert context.view_info["current_view"] == "dashboard"


class TestPromptFormatting:
    async def test_task_context_text(self, db_session, test_task):
        db_session.add(Subtask(user_id=test_task.user_id, task_id=test_task.id, title="Draft numbers"))
        db_session.add(Note(user_id=test_task.user_id, task_id=test_task.id, content="x" * 250))
        await db_session.commit()

        context = await ContextService(db_session).gather_task_context(test_task.user_id, test_task.id)
        text = format_task_context(context)

        assert text.startswith('TASK: "Complete quarterly report"')
        assert "FOLDER: Work" in text
        assert "STATUS: Pending" in text
        assert "- Draft numbers [Pending]" in text
        assert f"- {'x' * 200}..." in text

    async def test_assistant_context_text(self, db_session, test_task, test_user):
        context = await ContextService(db_session).gather_assistant_context(test_user.user_id)
        text = format_assistant_context(context)

        assert "Total Pending Tasks: 1" in text
        assert "Current View: dashboard" in text
        assert '- "Complete quarterly report" [Pending]' in text
        assert "- Work" in text

    def test_missing_context_is_empty(self):
        assert format_task_context(None) == ""
        assert format_assistant_context(None) == ""

    def test_retrieved_context(self):
        text = format_retrieved_context({
            "relevant_tasks": [{"title": "Report", "description": "Q4", "folder_name": "Work", "completed_at": None}],
            "relevant_notes": [{"content": "Ask finance", "task_title": "Report"}],
            "relevant_messages": [{"message": "Start with revenue", "task_title": None}],
        })

        assert text == (
            'RELEVANT TASKS:\n- "Report": Q4 (in folder: Work) [Pending]\n\n'
            'RELEVANT NOTES:\n- Ask finance (from task: "Report")\n\n'
            "RELEVANT PAST CONVERSATIONS:\n- Start with revenue"
        )

    def test_no_retrieved_context(self):
        assert format_retrieved_context({}) == "No relevant context found in user's task history."
