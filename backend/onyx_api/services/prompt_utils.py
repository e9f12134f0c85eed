"""
Utilities for constructing compact prompt context strings.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from onyx_api.services.context_service import AssistantContext, TaskContext


def _truncate(text: Optional[str], max_chars: int) -> str:
    text = text or ""
    return text[:max_chars] + "..." if len(text) > max_chars else text


def _status(completed_at: Optional[datetime]) -> str:
    return "Completed" if completed_at else "Pending"


def _date(value: Optional[datetime]) -> str:
    return value.date().isoformat() if value else ""


def format_task_context(context: Optional[TaskContext]) -> str:
    """Task, subtasks, notes and the last few turns of conversation."""
    if context is None:
        return ""

    task = context.task
    lines = [f'TASK: "{task.title}"']
    if task.description:
        lines.append(f"DESCRIPTION: {task.description}")
    if task.due_date:
        lines.append(f"DUE DATE: {_date(task.due_date)}")
    if context.folder:
        lines.append(f"FOLDER: {context.folder.name}")
    lines.append(f"STATUS: {_status(task.completed_at)}")
    if context.metadata.get("is_overdue"):
        lines.append("OVERDUE: yes")

    if context.subtasks:
        lines.append("")
        lines.append(f"SUBTASKS ({len(context.subtasks)}):")
        for subtask in context.subtasks[:5]:
            state = "Done" if subtask.completed_at else "Pending"
            lines.append(f"- {subtask.title} [{state}]")

    if context.notes:
        lines.append("")
        lines.append(f"NOTES ({len(context.notes)}):")
        for note in context.notes[:3]:
            lines.append(f"- {_truncate(note.content, 200)}")

    if context.message_history:
        lines.append("")
        lines.append("RECENT CONVERSATION:")
        for msg in context.message_history[-3:]:
            role = "USER" if msg.from_user else "AI"
            lines.append(f"{role}: {_truncate(msg.message, 150)}")

    return "\n".join(lines)


def format_assistant_context(context: Optional[AssistantContext]) -> str:
    """Productivity overview for the general assistant."""
    if context is None:
        return ""

    stats = context.user_stats
    lines = [
        "USER PRODUCTIVITY OVERVIEW:",
        f"Total Pending Tasks: {stats.get('pending_tasks', 0)}",
        f"Total Completed Tasks: {stats.get('completed_tasks', 0)}",
        f"Folders: {len(context.visible_folders)}",
        f"Current View: {context.view_info.get('current_view', 'dashboard')}",
    ]

    if context.visible_tasks:
        lines.append("")
        lines.append(f"CURRENT VISIBLE TASKS ({len(context.visible_tasks)}):")
        for task in context.visible_tasks[:5]:
            line = f'- "{task.title}" [{_status(task.completed_at)}]'
            if task.due_date:
                line += f" (Due: {_date(task.due_date)})"
            lines.append(line)

    if context.visible_folders:
        lines.append("")
        lines.append("FOLDERS:")
        for folder in context.visible_folders:
            lines.append(f"- {folder.name}")

    if context.recent_activity:
        lines.append("")
        lines.append("RECENT ACTIVITY:")
        for activity in context.recent_activity[:3]:
            lines.append(f"- {activity['type']}: {activity['name']}")

    return "\n".join(lines)


def format_retrieved_context(retrieved: Dict[str, List[Dict[str, Any]]]) -> str:
    """Search hits from the user's history, grouped by source."""
    sections = []

    tasks = retrieved.get("relevant_tasks") or []
    if tasks:
        lines = ["RELEVANT TASKS:"]
        for task in tasks:
            line = f'- "{task["title"]}"'
            if task.get("description"):
                line += f": {task['description']}"
            if task.get("folder_name"):
                line += f" (in folder: {task['folder_name']})"
            line += f" [{_status(task.get('completed_at'))}]"
            lines.append(line)
        sections.append("\n".join(lines))

    notes = retrieved.get("relevant_notes") or []
    if notes:
        lines = ["RELEVANT NOTES:"]
        for note in notes:
            line = f"- {note['content']}"
            if note.get("task_title"):
                line += f' (from task: "{note["task_title"]}")'
            lines.append(line)
        sections.append("\n".join(lines))

    messages = retrieved.get("relevant_messages") or []
    if messages:
        lines = ["RELEVANT PAST CONVERSATIONS:"]
        for msg in messages:
            line = f"- {msg['message']}"
            if msg.get("task_title"):
                line += f' (about task: "{msg["task_title"]}")'
            lines.append(line)
        sections.append("\n".join(lines))

    if not sections:
        return "No relevant context found in user's task history."
    return "\n\n".join(sections)
