"""
Task — flat personal to-do item, outside the System hierarchy.

Owned by ``user_id`` (the creator) and optionally assigned to another
user.  Not soft-deleted.
"""

from datetime import datetime, timedelta, timezone

from tracker.models import db
from tracker.models.hierarchy import TASKS_TRACKING_STATUSES
from tracker.models.lifecycle import as_days

TASK_STATUSES = TASKS_TRACKING_STATUSES
TASK_PRIORITIES = ("low", "medium", "high", "urgent")


def _utcnow():
    return datetime.now(timezone.utc)


class Task(db.Model):
    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(50), nullable=False, default="pending")
    priority = db.Column(db.String(20), nullable=False, default="medium")
    due_date = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    assigned_to = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_at = db.Column(db.DateTime, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    user = db.relationship("User", foreign_keys=[user_id], lazy="select")
    assigned_user = db.relationship("User", foreign_keys=[assigned_to], lazy="select")

    @classmethod
    def scope_due_soon(cls, query, days=None):
        limit = _utcnow().replace(tzinfo=None) + timedelta(days=as_days(days, 7))
        return query.filter(cls.due_date.isnot(None), cls.due_date <= limit)

    def stamp_created(self, user_id):
        self.user_id = user_id

    def sync_completed_at(self):
        """Keep ``completed_at`` in step with ``status``."""
        if self.status == "completed":
            if self.completed_at is None:
                self.completed_at = _utcnow()
        else:
            self.completed_at = None

    def to_dict(self, include_children=False):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "user_id": self.user_id,
            "assigned_to": self.assigned_to,
            "user": self.user.to_brief() if self.user else None,
            "assigned_user": self.assigned_user.to_brief() if self.assigned_user else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.title}>"
