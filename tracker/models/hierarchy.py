"""
Entity hierarchy — the tracked organisational structure.

Chain:  System → Process → FunctionsRequirement → TasksTracking → Correspondence

Every level carries LifecycleMixin (soft delete + attribution) and a
foreign key to its parent with ``ON DELETE CASCADE``.  Deleting a parent
through the service layer purges the whole subtree.

``scope_<name>(query, *args)`` classmethods are the named filters the
query builder exposes as ``filter[<name>]=...``.  A scope raises
ValueError when its argument is unusable.
"""

from datetime import date, datetime, timedelta, timezone

from tracker.models import db
from tracker.models.lifecycle import LifecycleMixin, day_end, day_start, require_date, as_days
from tracker.utils.helpers import to_db_int

# ── Constants ────────────────────────────────────────────────────────────────

TASKS_TRACKING_STATUSES = ("pending", "in_progress", "completed", "cancelled")
CORRESPONDENCE_TYPES = ("email", "letter", "phone", "meeting", "document", "other")


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _like(column, value):
    return column.ilike(f"%{value}%")


def _date_or_none(value):
    return value.isoformat() if value else None


# ── System ───────────────────────────────────────────────────────────────────

class System(LifecycleMixin, db.Model):
    """Top-level tracked system, addressed in URLs by ``slug``."""

    __tablename__ = "systems"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    slug = db.Column(db.String(255), nullable=True, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)

    processes = db.relationship(
        "Process", back_populates="system", lazy="select",
        passive_deletes=True, order_by="Process.id",
    )

    @classmethod
    def scope_search(cls, query, term):
        return query.filter(db.or_(_like(cls.name, term), _like(cls.description, term)))

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            **self.lifecycle_dict(),
            "creator": self.creator.to_brief() if self.creator else None,
        }
        if include_children:
            result["processes"] = [p.to_dict() for p in self.processes if not p.is_deleted]
        return result

    def __repr__(self):
        return f"<System {self.id}: {self.slug or self.name}>"


# ── Process ──────────────────────────────────────────────────────────────────

class Process(LifecycleMixin, db.Model):
    __tablename__ = "processes"

    id = db.Column(db.Integer, primary_key=True)
    system_id = db.Column(
        db.Integer, db.ForeignKey("systems.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    system = db.relationship("System", back_populates="processes")
    functions_requirements = db.relationship(
        "FunctionsRequirement", back_populates="process", lazy="select",
        passive_deletes=True, order_by="FunctionsRequirement.id",
    )

    # ── Scopes ───────────────────────────────────────────────────────────

    @classmethod
    def scope_for_system(cls, query, system_id):
        return query.filter(cls.system_id == to_db_int(system_id))

    @classmethod
    def scope_by_name(cls, query, name):
        return query.filter(_like(cls.name, name))

    @classmethod
    def scope_with_functions_requirements(cls, query, *_):
        return query.filter(cls.functions_requirements.any(FunctionsRequirement.deleted_at.is_(None)))

    @classmethod
    def scope_without_functions_requirements(cls, query, *_):
        return query.filter(~cls.functions_requirements.any(FunctionsRequirement.deleted_at.is_(None)))

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "system_id": self.system_id,
            "name": self.name,
            "description": self.description,
            **self.lifecycle_dict(),
            "system": {"id": self.system.id, "name": self.system.name, "slug": self.system.slug}
            if self.system else None,
            "creator": self.creator.to_brief() if self.creator else None,
        }
        if include_children:
            result["functions_requirements"] = [
                f.to_dict() for f in self.functions_requirements if not f.is_deleted
            ]
        return result

    def __repr__(self):
        return f"<Process {self.id}: {self.name}>"


# ── FunctionsRequirement ─────────────────────────────────────────────────────

class FunctionsRequirement(LifecycleMixin, db.Model):
    """Planned function/requirement of a Process, with a planned date window."""

    __tablename__ = "functions_requirements"

    id = db.Column(db.Integer, primary_key=True)
    process_id = db.Column(
        db.Integer, db.ForeignKey("processes.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    requirement = db.Column(db.Text, nullable=True)
    planned_start_date = db.Column(db.Date, nullable=True)
    planned_end_date = db.Column(db.Date, nullable=True)

    process = db.relationship("Process", back_populates="functions_requirements")
    tasks_tracking = db.relationship(
        "TasksTracking", back_populates="functions_requirement", lazy="select",
        passive_deletes=True, order_by="TasksTracking.id",
    )

    # ── Scopes ───────────────────────────────────────────────────────────

    @classmethod
    def scope_for_process(cls, query, process_id):
        return query.filter(cls.process_id == to_db_int(process_id))

    @classmethod
    def scope_by_name(cls, query, name):
        return query.filter(_like(cls.name, name))

    @classmethod
    def scope_upcoming(cls, query, days=None):
        today = _today()
        return query.filter(
            cls.planned_start_date >= today,
            cls.planned_start_date <= today + timedelta(days=as_days(days, 30)),
        )

    @classmethod
    def scope_overdue(cls, query, *_):
        return query.filter(cls.planned_end_date < _today())

    @classmethod
    def scope_completed(cls, query, *_):
        """At least one tracking record, and every active one completed."""
        active = TasksTracking.deleted_at.is_(None)
        return query.filter(
            cls.tasks_tracking.any(active),
            ~cls.tasks_tracking.any(db.and_(active, TasksTracking.status != "completed")),
        )

    @classmethod
    def scope_not_completed(cls, query, *_):
        active = TasksTracking.deleted_at.is_(None)
        return query.filter(
            db.or_(
                ~cls.tasks_tracking.any(active),
                cls.tasks_tracking.any(db.and_(active, TasksTracking.status != "completed")),
            )
        )

    @classmethod
    def scope_planned_between(cls, query, start, end):
        return query.filter(
            cls.planned_start_date >= require_date(start),
            cls.planned_start_date <= require_date(end),
        )

    @classmethod
    def scope_ending_between(cls, query, start, end):
        return query.filter(
            cls.planned_end_date >= require_date(start),
            cls.planned_end_date <= require_date(end),
        )

    @classmethod
    def scope_with_tasks_tracking(cls, query, *_):
        return query.filter(cls.tasks_tracking.any(TasksTracking.deleted_at.is_(None)))

    @classmethod
    def scope_without_tasks_tracking(cls, query, *_):
        return query.filter(~cls.tasks_tracking.any(TasksTracking.deleted_at.is_(None)))

    def to_dict(self, include_children=False):
        result = {
            "id": self.id,
            "process_id": self.process_id,
            "name": self.name,
            "requirement": self.requirement,
            "planned_start_date": _date_or_none(self.planned_start_date),
            "planned_end_date": _date_or_none(self.planned_end_date),
            **self.lifecycle_dict(),
            "process": {"id": self.process.id, "name": self.process.name} if self.process else None,
            "creator": self.creator.to_brief() if self.creator else None,
        }
        if include_children:
            result["tasks_tracking"] = [t.to_dict() for t in self.tasks_tracking if not t.is_deleted]
        return result

    def __repr__(self):
        return f"<FunctionsRequirement {self.id}: {self.name}>"


# ── TasksTracking ────────────────────────────────────────────────────────────

class TasksTracking(LifecycleMixin, db.Model):
    """Execution record for a FunctionsRequirement.

    ``status`` is free to move between any of TASKS_TRACKING_STATUSES.
    """

    __tablename__ = "tasks_tracking"

    id = db.Column(db.Integer, primary_key=True)
    function_id = db.Column(
        db.Integer, db.ForeignKey("functions_requirements.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    correspondence = db.Column(db.Text, nullable=True)
    actual_start_date = db.Column(db.Date, nullable=True)
    actual_end_date = db.Column(db.Date, nullable=True)
    status = db.Column(
        db.String(50), nullable=False, default="pending",
        comment="pending | in_progress | completed | cancelled",
    )

    functions_requirement = db.relationship("FunctionsRequirement", back_populates="tasks_tracking")
    correspondences = db.relationship(
        "Correspondence", back_populates="tasks_tracking", lazy="select",
        passive_deletes=True, order_by="Correspondence.id",
    )

    # ── Scopes ───────────────────────────────────────────────────────────

    @classmethod
    def scope_for_function(cls, query, function_id):
        return query.filter(cls.function_id == to_db_int(function_id))

    @classmethod
    def scope_by_status(cls, query, status):
        return query.filter(cls.status == status)

    @classmethod
    def scope_pending(cls, query, *_):
        return query.filter(cls.status == "pending")

    @classmethod
    def scope_in_progress(cls, query, *_):
        return query.filter(cls.status == "in_progress")

    @classmethod
    def scope_completed(cls, query, *_):
        return query.filter(cls.status == "completed")

    @classmethod
    def scope_cancelled(cls, query, *_):
        return query.filter(cls.status == "cancelled")

    @classmethod
    def scope_upcoming(cls, query, days=None):
        today = _today()
        return query.filter(
            cls.actual_start_date >= today,
            cls.actual_start_date <= today + timedelta(days=as_days(days, 30)),
        )

    @classmethod
    def scope_started(cls, query, *_):
        return query.filter(cls.actual_start_date.isnot(None), cls.actual_start_date <= _today())

    @classmethod
    def scope_finished(cls, query, *_):
        return query.filter(cls.actual_end_date.isnot(None), cls.actual_end_date <= _today())

    @classmethod
    def scope_not_finished(cls, query, *_):
        return query.filter(db.or_(cls.actual_end_date.is_(None), cls.actual_end_date > _today()))

    @classmethod
    def scope_overdue(cls, query, *_):
        return query.filter(cls.actual_end_date < _today(), cls.status != "completed")

    @classmethod
    def scope_started_between(cls, query, start, end):
        return query.filter(
            cls.actual_start_date >= require_date(start),
            cls.actual_start_date <= require_date(end),
        )

    @classmethod
    def scope_ending_between(cls, query, start, end):
        return query.filter(
            cls.actual_end_date >= require_date(start),
            cls.actual_end_date <= require_date(end),
        )

    @classmethod
    def scope_with_correspondences(cls, query, *_):
        return query.filter(cls.correspondences.any(Correspondence.deleted_at.is_(None)))

    @classmethod
    def scope_without_correspondences(cls, query, *_):
        return query.filter(~cls.correspondences.any(Correspondence.deleted_at.is_(None)))

    def to_dict(self, include_children=False):
        fr = self.functions_requirement
        result = {
            "id": self.id,
            "function_id": self.function_id,
            "correspondence": self.correspondence,
            "actual_start_date": _date_or_none(self.actual_start_date),
            "actual_end_date": _date_or_none(self.actual_end_date),
            "status": self.status,
            **self.lifecycle_dict(),
            "functions_requirement": {"id": fr.id, "name": fr.name} if fr else None,
            "creator": self.creator.to_brief() if self.creator else None,
        }
        if include_children:
            result["correspondences"] = [c.to_dict() for c in self.correspondences if not c.is_deleted]
        return result

    def __repr__(self):
        return f"<TasksTracking {self.id}: {self.status}>"


# ── Correspondence ───────────────────────────────────────────────────────────

class Correspondence(LifecycleMixin, db.Model):
    __tablename__ = "correspondences"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks_tracking.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(
        db.String(50), nullable=False,
        comment="email | letter | phone | meeting | document | other",
    )
    reference = db.Column(db.Text, nullable=True)

    tasks_tracking = db.relationship("TasksTracking", back_populates="correspondences")

    # ── Scopes ───────────────────────────────────────────────────────────

    @classmethod
    def scope_for_task(cls, query, task_id):
        return query.filter(cls.task_id == to_db_int(task_id))

    @classmethod
    def scope_by_type(cls, query, type_):
        return query.filter(cls.type == type_)

    @classmethod
    def scope_email(cls, query, *_):
        return query.filter(cls.type == "email")

    @classmethod
    def scope_letter(cls, query, *_):
        return query.filter(cls.type == "letter")

    @classmethod
    def scope_phone(cls, query, *_):
        return query.filter(cls.type == "phone")

    @classmethod
    def scope_meeting(cls, query, *_):
        return query.filter(cls.type == "meeting")

    @classmethod
    def scope_document(cls, query, *_):
        return query.filter(cls.type == "document")

    @classmethod
    def scope_by_reference(cls, query, reference):
        return query.filter(_like(cls.reference, reference))

    @classmethod
    def scope_today(cls, query, *_):
        today = _today()
        return query.filter(cls.created_at >= day_start(today), cls.created_at <= day_end(today))

    @classmethod
    def scope_this_week(cls, query, *_):
        today = _today()
        monday = today - timedelta(days=today.weekday())
        return query.filter(
            cls.created_at >= day_start(monday),
            cls.created_at <= day_end(monday + timedelta(days=6)),
        )

    @classmethod
    def scope_this_month(cls, query, *_):
        today = _today()
        first = today.replace(day=1)
        next_first = (first + timedelta(days=32)).replace(day=1)
        return query.filter(cls.created_at >= day_start(first), cls.created_at < day_start(next_first))

    @classmethod
    def scope_this_year(cls, query, *_):
        year = _today().year
        return query.filter(
            cls.created_at >= datetime(year, 1, 1),
            cls.created_at < datetime(year + 1, 1, 1),
        )

    def to_dict(self, include_children=False):
        task = self.tasks_tracking
        return {
            "id": self.id,
            "task_id": self.task_id,
            "type": self.type,
            "reference": self.reference,
            **self.lifecycle_dict(),
            "tasks_tracking": {"id": task.id, "correspondence": task.correspondence} if task else None,
            "creator": self.creator.to_brief() if self.creator else None,
        }

    def __repr__(self):
        return f"<Correspondence {self.id}: {self.type}>"
