"""
Lifecycle Mixin — soft delete plus creator/updater/deleter attribution.

Adds to any hierarchy model:
    - created_by / updated_by / deleted_by   (FK users.id, SET NULL)
    - created_at / updated_at / deleted_at
    - creator / updater / deleter relationships
    - ``lifecycle`` property returning an immutable Lifecycle snapshot

Usage:
    class MyModel(LifecycleMixin, db.Model):
        ...

    # Soft delete
    obj.soft_delete(user_id)
    db.session.commit()

    # Query only active records
    MyModel.query_active().all()

    # Include deleted
    MyModel.query.all()
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import declared_attr

from tracker.models import db
from tracker.utils.helpers import parse_date_input, to_db_int


# Day windows for the recent / due_soon scopes
MAX_SCOPE_DAYS = 36500


def _utcnow():
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Lifecycle:
    """Who touched a record and when."""

    created_by: int | None
    created_at: datetime | None
    updated_by: int | None
    updated_at: datetime | None
    deleted_by: int | None = None
    deleted_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "deleted_by": self.deleted_by,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
        }


class LifecycleMixin:
    """Mixin that adds soft delete and user attribution to a model."""

    created_at = db.Column(db.DateTime, default=_utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True, default=None, index=True)

    @declared_attr
    def created_by(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    @declared_attr
    def updated_by(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    @declared_attr
    def deleted_by(cls):
        return db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    @declared_attr
    def creator(cls):
        return db.relationship("User", foreign_keys=[cls.created_by], lazy="select")

    @declared_attr
    def updater(cls):
        return db.relationship("User", foreign_keys=[cls.updated_by], lazy="select")

    @declared_attr
    def deleter(cls):
        return db.relationship("User", foreign_keys=[cls.deleted_by], lazy="select")

    # ── Stamping ─────────────────────────────────────────────────────────

    def stamp_created(self, user_id):
        self.created_by = user_id
        self.updated_by = user_id

    def stamp_updated(self, user_id):
        self.updated_by = user_id

    def soft_delete(self, user_id=None):
        """Mark this record as deleted, recording who did it."""
        self.deleted_by = user_id
        self.deleted_at = _utcnow()

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    @property
    def lifecycle(self) -> Lifecycle:
        return Lifecycle(
            created_by=self.created_by,
            created_at=self.created_at,
            updated_by=self.updated_by,
            updated_at=self.updated_at,
            deleted_by=self.deleted_by,
            deleted_at=self.deleted_at,
        )

    # ── Query helpers ────────────────────────────────────────────────────

    @classmethod
    def query_active(cls):
        """Return a query that excludes soft-deleted records."""
        return cls.query.filter(cls.deleted_at.is_(None))

    # ── Scopes shared by every hierarchy model ───────────────────────────

    @classmethod
    def scope_created_by(cls, query, user_id):
        return query.filter(cls.created_by == to_db_int(user_id))

    @classmethod
    def scope_updated_by(cls, query, user_id):
        return query.filter(cls.updated_by == to_db_int(user_id))

    @classmethod
    def scope_created_between(cls, query, start, end):
        return query.filter(cls.created_at >= day_start(start), cls.created_at <= day_end(end))

    @classmethod
    def scope_updated_between(cls, query, start, end):
        return query.filter(cls.updated_at >= day_start(start), cls.updated_at <= day_end(end))

    @classmethod
    def scope_recent(cls, query, days=None):
        return query.filter(cls.created_at >= _utcnow() - timedelta(days=as_days(days, 30)))

    def lifecycle_dict(self) -> dict:
        return self.lifecycle.to_dict()


def day_start(value):
    d = require_date(value)
    return datetime(d.year, d.month, d.day)


def day_end(value):
    d = require_date(value)
    return datetime(d.year, d.month, d.day, 23, 59, 59, 999999)


def as_days(value, default):
    """Scope argument → day count; flags such as ``filter[recent]=true`` use the default."""
    try:
        days = int(value)
    except (TypeError, ValueError):
        return default
    if days > MAX_SCOPE_DAYS:
        raise ValueError(f"at most {MAX_SCOPE_DAYS} days")
    return days if days > 0 else default


def require_date(value):
    d = parse_date_input(value)
    if d is None:
        raise ValueError("A date bound is required.")
    return d
