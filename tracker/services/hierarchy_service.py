"""Resource definitions for the System → … → Correspondence hierarchy.

Each ``ResourceService`` below bundles the validator, query allow-lists,
eager loads, purge targets and summary for one level.  Summary counts
exclude soft-deleted rows.
"""
from sqlalchemy import func

from tracker.models import db
from tracker.models.auth import User
from tracker.models.hierarchy import (
    CORRESPONDENCE_TYPES,
    TASKS_TRACKING_STATUSES,
    Correspondence,
    FunctionsRequirement,
    Process,
    System,
    TasksTracking,
)
from tracker.services.query_builder import AllowedFilter
from tracker.services.resource_service import ResourceService
from tracker.services.slug_service import assign_slug
from tracker.services.validation import Field, Validator

SCOPE = AllowedFilter.scope
EXACT = AllowedFilter.exact


# ── Summary helpers ──────────────────────────────────────────────────────────

def _active(model):
    return model.query_active()


def _count(query) -> int:
    return query.order_by(None).count()


def _grouped(model, group_col, parent_model=None, parent_label=None) -> list[dict]:
    """COUNT(*) GROUP BY ``group_col`` with the parent's display column attached."""
    rows = (
        db.session.query(group_col, func.count(model.id))
        .filter(model.deleted_at.is_(None))
        .group_by(group_col)
        .order_by(group_col)
        .all()
    )
    names = {}
    if parent_model is not None:
        ids = [r[0] for r in rows if r[0] is not None]
        if ids:
            names = dict(
                db.session.query(parent_model.id, parent_label).filter(parent_model.id.in_(ids)).all()
            )
    key = group_col.key
    out = []
    for value, count in rows:
        entry = {key: value, "count": count}
        if parent_model is not None:
            entry["name"] = names.get(value)
        out.append(entry)
    return out


# ═══════════════════════════════════════════════════════════════════════════
#  SYSTEMS
# ═══════════════════════════════════════════════════════════════════════════

system_validator = Validator((
    Field(
        "name", "system name", required=True, max_length=255, unique=(System, "name"),
        messages={
            "required": "The system name is required.",
            "string": "The system name must be a string.",
            "max": "The system name may not be greater than 255 characters.",
            "unique": "The system name has already been taken.",
        },
    ),
    Field(
        "description", "system description", required=True,
        messages={
            "required": "The system description is required.",
            "string": "The system description must be a string.",
        },
    ),
))


def system_summary() -> dict:
    return {
        "total_systems": _count(_active(System)),
        "recent_systems": _count(System.scope_recent(_active(System))),
        "systems_with_processes": _count(
            _active(System).filter(System.processes.any(Process.deleted_at.is_(None)))
        ),
        "systems_without_processes": _count(
            _active(System).filter(~System.processes.any(Process.deleted_at.is_(None)))
        ),
        "total_processes": _count(_active(Process)),
        "processes_by_system": _grouped(Process, Process.system_id, System, System.name),
    }


systems = ResourceService(
    model=System,
    label="system",
    entity_type="system",
    permission="systems",
    validator=system_validator,
    fields=("name", "description"),
    filters=(
        "name",
        "description",
        SCOPE("search"),
        SCOPE("created_by"),
        SCOPE("updated_by"),
        SCOPE("created_between"),
        SCOPE("recent"),
    ),
    sorts=("name", "created_at", "updated_at"),
    eager=("creator", "updater"),
    lookup="slug",
    children=((Process, "system_id"),),
    before_save=assign_slug,
    summary=system_summary,
)


# ═══════════════════════════════════════════════════════════════════════════
#  PROCESSES
# ═══════════════════════════════════════════════════════════════════════════

process_validator = Validator((
    Field(
        "system_id", "system", required=True, kind="integer", exists=System,
        messages={
            "required": "Please select a system.",
            "exists": "The selected system is invalid.",
        },
    ),
    Field(
        "name", "process name", required=True, max_length=255,
        messages={
            "required": "Process name is required.",
            "string": "Process name must be a string.",
            "max": "Process name cannot exceed 255 characters.",
        },
    ),
    Field(
        "description", "process description", required=True,
        messages={
            "required": "Process description is required.",
            "string": "Process description must be a string.",
        },
    ),
))


def process_summary() -> dict:
    with_frs = Process.functions_requirements.any(FunctionsRequirement.deleted_at.is_(None))
    return {
        "total_processes": _count(_active(Process)),
        "processes_by_system": _grouped(Process, Process.system_id, System, System.name),
        "recent_processes": _count(Process.scope_recent(_active(Process))),
        "processes_with_functions": _count(_active(Process).filter(with_frs)),
        "processes_without_functions": _count(_active(Process).filter(~with_frs)),
        "total_functions_requirements": _count(_active(FunctionsRequirement)),
        "total_tasks_tracking": _count(_active(TasksTracking)),
    }


def process_form_options() -> dict:
    rows = _active(System).order_by(System.name).all()
    return {"systems": [{"id": s.id, "name": s.name, "slug": s.slug} for s in rows]}


processes = ResourceService(
    model=Process,
    label="process",
    entity_type="process",
    permission="processes",
    validator=process_validator,
    fields=("system_id", "name", "description"),
    filters=(
        "name",
        "description",
        EXACT("system_id"),
        SCOPE("for_system"),
        SCOPE("by_name"),
        SCOPE("created_by"),
        SCOPE("updated_by"),
        SCOPE("created_between"),
        SCOPE("updated_between"),
        SCOPE("with_functions_requirements"),
        SCOPE("without_functions_requirements"),
        SCOPE("recent"),
    ),
    sorts=("name", "system_id", "created_at", "updated_at"),
    eager=("system", "creator", "updater"),
    children=((FunctionsRequirement, "process_id"),),
    summary=process_summary,
    form_options=process_form_options,
)


# ═══════════════════════════════════════════════════════════════════════════
#  FUNCTIONS REQUIREMENTS
# ═══════════════════════════════════════════════════════════════════════════

functions_requirement_validator = Validator((
    Field(
        "process_id", "process", required=True, kind="integer", exists=Process,
        messages={
            "required": "Please select a process.",
            "exists": "The selected process is invalid.",
        },
    ),
    Field(
        "name", "function name", required=True, max_length=255,
        messages={
            "required": "Function name is required.",
            "string": "Function name must be a string.",
            "max": "Function name cannot exceed 255 characters.",
        },
    ),
    Field(
        "requirement", "function requirement", required=True,
        messages={
            "required": "Function requirement is required.",
            "string": "Function requirement must be a string.",
        },
    ),
    Field(
        "planned_start_date", "planned start date", required=True, kind="date",
        messages={
            "required": "Planned start date is required.",
            "date": "Planned start date must be a valid date.",
        },
    ),
    Field(
        "planned_end_date", "planned end date", required=True, kind="date",
        after="planned_start_date",
        messages={
            "required": "Planned end date is required.",
            "date": "Planned end date must be a valid date.",
            "after": "Planned end date must be after planned start date.",
        },
    ),
))


def functions_requirement_summary() -> dict:
    q = _active(FunctionsRequirement)
    return {
        "total_functions_requirements": _count(q),
        "upcoming_functions_requirements": _count(FunctionsRequirement.scope_upcoming(q)),
        "overdue_functions_requirements": _count(FunctionsRequirement.scope_overdue(q)),
        "completed_functions_requirements": _count(FunctionsRequirement.scope_completed(q)),
        "not_completed_functions_requirements": _count(FunctionsRequirement.scope_not_completed(q)),
        "functions_requirements_by_process": _grouped(
            FunctionsRequirement, FunctionsRequirement.process_id, Process, Process.name,
        ),
        "total_tasks_tracking": _count(_active(TasksTracking)),
        "functions_requirements_with_tasks": _count(FunctionsRequirement.scope_with_tasks_tracking(q)),
        "functions_requirements_without_tasks": _count(
            FunctionsRequirement.scope_without_tasks_tracking(q)
        ),
    }


def functions_requirement_form_options() -> dict:
    rows = _active(Process).order_by(Process.name).all()
    return {
        "processes": [
            {"id": p.id, "name": p.name, "system": p.system.name if p.system else None}
            for p in rows
        ],
    }


functions_requirements = ResourceService(
    model=FunctionsRequirement,
    label="functions requirement",
    entity_type="functions_requirement",
    permission="functions requirements",
    validator=functions_requirement_validator,
    fields=("process_id", "name", "requirement", "planned_start_date", "planned_end_date"),
    filters=(
        "name",
        "requirement",
        EXACT("process_id"),
        SCOPE("for_process"),
        SCOPE("by_name"),
        SCOPE("created_by"),
        SCOPE("updated_by"),
        SCOPE("upcoming"),
        SCOPE("overdue"),
        SCOPE("not_completed"),
        SCOPE("completed"),
        SCOPE("planned_between"),
        SCOPE("ending_between"),
        SCOPE("with_tasks_tracking"),
        SCOPE("without_tasks_tracking"),
    ),
    sorts=(
        "name", "process_id", "planned_start_date", "planned_end_date", "created_at", "updated_at",
    ),
    eager=("process.system", "creator", "updater"),
    children=((TasksTracking, "function_id"),),
    summary=functions_requirement_summary,
    form_options=functions_requirement_form_options,
)


# ═══════════════════════════════════════════════════════════════════════════
#  TASKS TRACKING
# ═══════════════════════════════════════════════════════════════════════════

_STATUS_LIST = ", ".join(TASKS_TRACKING_STATUSES)

tasks_tracking_validator = Validator((
    Field(
        "function_id", "function requirement", required=True, kind="integer",
        exists=FunctionsRequirement,
        messages={
            "required": "Please select a function requirement.",
            "exists": "The selected function requirement is invalid.",
        },
    ),
    Field(
        "correspondence", "correspondence", required=True,
        messages={
            "required": "Correspondence is required.",
            "string": "Correspondence must be a string.",
        },
    ),
    Field(
        "actual_start_date", "actual start date", required=True, kind="date",
        messages={
            "required": "Actual start date is required.",
            "date": "Actual start date must be a valid date.",
        },
    ),
    Field(
        "actual_end_date", "actual end date", required=True, kind="date", after="actual_start_date",
        messages={
            "required": "Actual end date is required.",
            "date": "Actual end date must be a valid date.",
            "after": "Actual end date must be after actual start date.",
        },
    ),
    Field(
        "status", "status", required=True, choices=TASKS_TRACKING_STATUSES,
        messages={
            "required": "Status is required.",
            "in": f"Status must be one of: {_STATUS_LIST}.",
        },
    ),
))


def tasks_tracking_summary() -> dict:
    q = _active(TasksTracking)
    return {
        "total_tasks_tracking": _count(q),
        "pending_tasks_tracking": _count(TasksTracking.scope_pending(q)),
        "in_progress_tasks_tracking": _count(TasksTracking.scope_in_progress(q)),
        "completed_tasks_tracking": _count(TasksTracking.scope_completed(q)),
        "cancelled_tasks_tracking": _count(TasksTracking.scope_cancelled(q)),
        "upcoming_tasks_tracking": _count(TasksTracking.scope_upcoming(q)),
        "started_tasks_tracking": _count(TasksTracking.scope_started(q)),
        "finished_tasks_tracking": _count(TasksTracking.scope_finished(q)),
        "overdue_tasks_tracking": _count(TasksTracking.scope_overdue(q)),
        "tasks_tracking_by_function": _grouped(
            TasksTracking, TasksTracking.function_id, FunctionsRequirement, FunctionsRequirement.name,
        ),
        "tasks_tracking_by_status": _grouped(TasksTracking, TasksTracking.status),
        "total_correspondences": _count(_active(Correspondence)),
        "tasks_tracking_with_correspondences": _count(TasksTracking.scope_with_correspondences(q)),
        "tasks_tracking_without_correspondences": _count(TasksTracking.scope_without_correspondences(q)),
    }


def tasks_tracking_form_options() -> dict:
    rows = _active(FunctionsRequirement).order_by(FunctionsRequirement.name).all()
    return {
        "functions_requirements": [
            {"id": f.id, "name": f.name, "process": f.process.name if f.process else None}
            for f in rows
        ],
        "statuses": list(TASKS_TRACKING_STATUSES),
    }


tasks_tracking = ResourceService(
    model=TasksTracking,
    label="tasks tracking",
    entity_type="tasks_tracking",
    permission="tasks tracking",
    validator=tasks_tracking_validator,
    fields=("function_id", "correspondence", "actual_start_date", "actual_end_date", "status"),
    filters=(
        "correspondence",
        "status",
        EXACT("function_id"),
        SCOPE("for_function"),
        SCOPE("by_status"),
        SCOPE("pending"),
        SCOPE("in_progress"),
        SCOPE("completed"),
        SCOPE("cancelled"),
        SCOPE("created_by"),
        SCOPE("updated_by"),
        SCOPE("upcoming"),
        SCOPE("started"),
        SCOPE("finished"),
        SCOPE("not_finished"),
        SCOPE("overdue"),
        SCOPE("started_between"),
        SCOPE("ending_between"),
        SCOPE("with_correspondences"),
        SCOPE("without_correspondences"),
    ),
    sorts=(
        "correspondence", "status", "actual_start_date", "actual_end_date",
        "function_id", "created_at", "updated_at",
    ),
    eager=("functions_requirement.process.system", "creator", "updater"),
    children=((Correspondence, "task_id"),),
    summary=tasks_tracking_summary,
    form_options=tasks_tracking_form_options,
)


# ═══════════════════════════════════════════════════════════════════════════
#  CORRESPONDENCES
# ═══════════════════════════════════════════════════════════════════════════

correspondence_validator = Validator((
    Field(
        "task_id", "task", required=True, kind="integer", exists=TasksTracking,
        messages={
            "required": "Please select a task.",
            "exists": "The selected task is invalid.",
        },
    ),
    Field(
        "type", "correspondence type", required=True, max_length=50, choices=CORRESPONDENCE_TYPES,
        messages={
            "required": "Correspondence type is required.",
            "string": "Correspondence type must be a string.",
            "max": "Correspondence type cannot exceed 50 characters.",
            "in": f"Correspondence type must be one of: {', '.join(CORRESPONDENCE_TYPES)}.",
        },
    ),
    Field(
        "reference", "reference", required=True,
        messages={
            "required": "Reference is required.",
            "string": "Reference must be a string.",
        },
    ),
))


def correspondence_summary() -> dict:
    q = _active(Correspondence)
    summary = {"total_correspondences": _count(q)}
    for type_ in ("email", "letter", "phone", "meeting", "document"):
        summary[f"{type_}_correspondences"] = _count(getattr(Correspondence, f"scope_{type_}")(q))
    summary.update({
        "recent_correspondences": _count(Correspondence.scope_recent(q)),
        "today_correspondences": _count(Correspondence.scope_today(q)),
        "this_week_correspondences": _count(Correspondence.scope_this_week(q)),
        "this_month_correspondences": _count(Correspondence.scope_this_month(q)),
        "this_year_correspondences": _count(Correspondence.scope_this_year(q)),
        "correspondences_by_type": _grouped(Correspondence, Correspondence.type),
        "correspondences_by_task": _grouped(
            Correspondence, Correspondence.task_id, TasksTracking, TasksTracking.correspondence,
        ),
        "correspondences_by_creator": _grouped(
            Correspondence, Correspondence.created_by, User, User.name,
        ),
    })
    return summary


def correspondence_form_options() -> dict:
    rows = _active(TasksTracking).order_by(TasksTracking.id).all()
    return {
        "tasks_tracking": [
            {"id": t.id, "correspondence": t.correspondence, "status": t.status} for t in rows
        ],
        "types": list(CORRESPONDENCE_TYPES),
    }


correspondences = ResourceService(
    model=Correspondence,
    label="correspondence",
    entity_type="correspondence",
    permission="correspondences",
    validator=correspondence_validator,
    fields=("task_id", "type", "reference"),
    filters=(
        "type",
        "reference",
        EXACT("task_id"),
        SCOPE("for_task"),
        SCOPE("by_type"),
        SCOPE("email"),
        SCOPE("letter"),
        SCOPE("phone"),
        SCOPE("meeting"),
        SCOPE("document"),
        SCOPE("created_by"),
        SCOPE("updated_by"),
        SCOPE("by_reference"),
        SCOPE("created_between"),
        SCOPE("updated_between"),
        SCOPE("recent"),
        SCOPE("today"),
        SCOPE("this_week"),
        SCOPE("this_month"),
        SCOPE("this_year"),
    ),
    sorts=("type", "reference", "task_id", "created_at", "updated_at"),
    eager=("tasks_tracking.functions_requirement.process.system", "creator", "updater"),
    summary=correspondence_summary,
    form_options=correspondence_form_options,
)


HIERARCHY_RESOURCES = (systems, processes, functions_requirements, tasks_tracking, correspondences)
