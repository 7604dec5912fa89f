"""Resource definition for the flat Task list.

Tasks are owned by the creating user and hard-deleted; ``completed_at``
follows ``status``.
"""
from datetime import datetime, timezone

from sqlalchemy import func

from tracker.models import db
from tracker.models.auth import User
from tracker.models.task import TASK_PRIORITIES, TASK_STATUSES, Task
from tracker.services.query_builder import AllowedFilter
from tracker.services.resource_service import ResourceService
from tracker.services.validation import Field, Validator

task_validator = Validator((
    Field("title", "title", required=True, max_length=255),
    Field("description", "description"),
    Field("status", "status", required=True, choices=TASK_STATUSES),
    Field("priority", "priority", required=True, choices=TASK_PRIORITIES),
    Field("due_date", "due date", kind="datetime"),
    Field("assigned_to", "assigned user", kind="integer", exists=User),
))


def _sync_completed_at(task: Task, clean: dict, is_new: bool) -> None:
    task.sync_completed_at()


def _counts_by(column) -> dict:
    rows = db.session.query(column, func.count(Task.id)).group_by(column).all()
    return {value: count for value, count in rows}


def task_summary() -> dict:
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return {
        "total_tasks": Task.query.count(),
        "tasks_by_status": _counts_by(Task.status),
        "tasks_by_priority": _counts_by(Task.priority),
        "due_soon_tasks": Task.scope_due_soon(Task.query).count(),
        "overdue_tasks": Task.query.filter(
            Task.due_date.isnot(None), Task.due_date < now, Task.status != "completed",
        ).count(),
    }


def task_form_options() -> dict:
    users = User.query.order_by(User.name).all()
    return {
        "users": [u.to_brief() for u in users],
        "statuses": list(TASK_STATUSES),
        "priorities": list(TASK_PRIORITIES),
    }


tasks = ResourceService(
    model=Task,
    label="task",
    entity_type="task",
    permission="tasks",
    validator=task_validator,
    fields=("title", "description", "status", "priority", "due_date", "assigned_to"),
    filters=(
        "title",
        "status",
        "priority",
        AllowedFilter.exact("user_id"),
        AllowedFilter.exact("assigned_to"),
        AllowedFilter.scope("due_soon"),
    ),
    sorts=("title", "status", "priority", "due_date", "created_at", "updated_at"),
    eager=("user", "assigned_user"),
    before_save=_sync_completed_at,
    summary=task_summary,
    form_options=task_form_options,
)
