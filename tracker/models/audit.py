"""
Audit and activity models.

Models:
    - AuditLog: append-only field-level change trail (``{field: {old, new}}``).
    - ActivityLog: human-readable event feed ("System created", "Role assigned").

Both writers ``flush`` only, so callers keep transaction control.
"""

import json
from datetime import datetime, timezone

from tracker.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {"created", "updated", "deleted"}


def _utcnow():
    return datetime.now(timezone.utc)


def _loads(text):
    try:
        return json.loads(text or "{}")
    except (json.JSONDecodeError, TypeError):
        return {}


class AuditLog(db.Model):
    """
    Immutable audit trail for every hierarchy mutation.

    One row per action.  ``diff_json`` carries the old→new snapshot of
    every changed field.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_actor", "actor_user_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    # Polymorphic entity reference
    entity_type = db.Column(
        db.String(50), nullable=False,
        comment="system | process | functions_requirement | tasks_tracking | correspondence | task",
    )
    entity_id = db.Column(db.String(36), nullable=False)

    action = db.Column(db.String(20), nullable=False, comment="created | updated | deleted")
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    diff_json = db.Column(db.Text, default="{}", comment="JSON: {field: {old, new}}")

    timestamp = db.Column(db.DateTime, nullable=False, default=_utcnow)

    actor = db.relationship("User", foreign_keys=[actor_user_id], lazy="select")

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        return _loads(self.diff_json)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "actor": self.actor.to_brief() if self.actor else None,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


class ActivityLog(db.Model):
    """Event feed entry: who (causer) did what (description) to which subject."""

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_subject", "subject_type", "subject_id"),
        db.Index("idx_activity_causer", "causer_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    log_name = db.Column(db.String(50), nullable=False, default="default")
    description = db.Column(db.String(255), nullable=False)
    subject_type = db.Column(db.String(50), nullable=True)
    subject_id = db.Column(db.String(36), nullable=True)
    causer_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    properties_json = db.Column(db.Text, default="{}")
    created_at = db.Column(db.DateTime, nullable=False, default=_utcnow, index=True)

    causer = db.relationship("User", foreign_keys=[causer_id], lazy="select")

    @property
    def properties(self) -> dict:
        return _loads(self.properties_json)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "log_name": self.log_name,
            "description": self.description,
            "subject_type": self.subject_type,
            "subject_id": self.subject_id,
            "causer_id": self.causer_id,
            "causer": self.causer.to_brief() if self.causer else None,
            "properties": self.properties,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.description}>"


# ── Convenience writers ──────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor_user_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")

    log = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_user_id=actor_user_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log


def write_activity(
    description: str,
    *,
    subject_type: str | None = None,
    subject_id=None,
    causer_id: int | None = None,
    properties: dict | None = None,
    log_name: str = "default",
) -> ActivityLog:
    """Append a single activity row (flush only)."""
    entry = ActivityLog(
        log_name=log_name,
        description=description,
        subject_type=subject_type,
        subject_id=str(subject_id) if subject_id is not None else None,
        causer_id=causer_id,
        properties_json=json.dumps(properties or {}, default=str),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def audit_trail(entity_type: str, entity_id) -> list[dict]:
    """Audit rows for one entity, newest first."""
    rows = (
        AuditLog.query
        .filter_by(entity_type=entity_type, entity_id=str(entity_id))
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .all()
    )
    return [r.to_dict() for r in rows]
