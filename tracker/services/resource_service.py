"""Generic validated-mutation pipeline shared by every tracked resource.

Transaction policy: ``create``/``update``/``delete`` validate first, then run
the write, the lifecycle stamps, one audit row and one activity row inside a
single transaction and commit.  Any exception in that block rolls back and
surfaces as ``TransactionError("Failed to <verb> <label>: <exc>")``.

Reads go through ``QueryBuilder`` so every index shares the same filter /
sort / pagination contract.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable

from sqlalchemy.orm import selectinload

from tracker.core.exceptions import NotFoundError, TransactionError
from tracker.models import db
from tracker.models.audit import audit_trail, write_activity, write_audit
from tracker.services.query_builder import QueryBuilder, paginate
from tracker.services.validation import Validator
from tracker.utils.helpers import old_input, to_db_int

logger = logging.getLogger(__name__)


def _jsonable(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


@dataclass
class ResourceService:
    """Configuration plus behaviour for one resource type.

    model:           SQLAlchemy model class
    label:           lower-case singular used in messages ("functions requirement")
    entity_type:     audit/activity subject type ("functions_requirement")
    permission:      permission subject ("functions requirements")
    validator:       Validator for create and update payloads
    fields:          columns copied from the cleaned payload and tracked in diffs
    lookup:          route key column, "id" or "slug"
    children:        (model, fk column name) pairs purged when a row is deleted
    before_save:     hook(instance, clean, is_new) run inside the transaction
    summary:         zero-arg callable returning the summary dict
    form_options:    zero-arg callable returning lookup lists for client forms
    """

    model: Any
    label: str
    entity_type: str
    permission: str
    validator: Validator
    fields: tuple
    filters: tuple = ()
    sorts: tuple = ()
    default_sort: str = "-created_at"
    eager: tuple = ()
    lookup: str = "id"
    children: tuple = ()
    before_save: Callable | None = None
    summary: Callable | None = None
    form_options: Callable | None = None

    # ── Reads ────────────────────────────────────────────────────────────

    @property
    def soft_deletes(self) -> bool:
        return hasattr(self.model, "deleted_at")

    @property
    def title(self) -> str:
        return self.label[:1].upper() + self.label[1:]

    def base_query(self):
        query = self.model.query_active() if self.soft_deletes else self.model.query
        for path in self.eager:
            query = query.options(_eager(self.model, path))
        return query

    def index(self, args, per_page: int):
        builder = QueryBuilder(
            self.model, self.base_query(),
            filters=self.filters, sorts=self.sorts, default_sort=self.default_sort,
        )
        return paginate(builder.apply(args), args, per_page)

    def get(self, key):
        column = getattr(self.model, self.lookup)
        if self.lookup == "id":
            try:
                key = to_db_int(key)
            except (TypeError, ValueError):
                raise NotFoundError(self.title, key) from None
        instance = self.base_query().filter(column == key).first()
        if instance is None:
            raise NotFoundError(self.title, key)
        return instance

    def audits(self, instance) -> list[dict]:
        return audit_trail(self.entity_type, instance.id)

    def get_summary(self) -> dict:
        return self.summary() if self.summary else {}

    def get_form_options(self) -> dict:
        return self.form_options() if self.form_options else {}

    # ── Writes ───────────────────────────────────────────────────────────

    def create(self, data: dict, *, user_id: int):
        clean = self.validator.validate(data)

        def _do():
            instance = self.model()
            for name in self.fields:
                if name in clean:
                    setattr(instance, name, clean[name])
            instance.stamp_created(user_id)
            if self.before_save:
                self.before_save(instance, clean, True)
            db.session.add(instance)
            db.session.flush()
            diff = {name: {"old": None, "new": _jsonable(getattr(instance, name))} for name in self.fields}
            self._log(instance, "created", user_id, diff)
            return instance

        instance = self._transaction("create", data, _do)
        logger.info(
            "%s created id=%s", self.title, instance.id,
            extra={"resource": self.entity_type, "resource_id": instance.id,
                   "user_id": user_id, "action": "created"},
        )
        return instance

    def update(self, instance, data: dict, *, user_id: int):
        clean = self.validator.validate(data, instance=instance)

        def _do():
            before = {name: _jsonable(getattr(instance, name)) for name in self.fields}
            for name in self.fields:
                if name in clean:
                    setattr(instance, name, clean[name])
            if hasattr(instance, "stamp_updated"):
                instance.stamp_updated(user_id)
            if self.before_save:
                self.before_save(instance, clean, False)
            db.session.flush()
            diff = {}
            for name in self.fields:
                new = _jsonable(getattr(instance, name))
                if before[name] != new:
                    diff[name] = {"old": before[name], "new": new}
            self._log(instance, "updated", user_id, diff)
            return instance

        instance = self._transaction("update", data, _do)
        logger.info(
            "%s updated id=%s", self.title, instance.id,
            extra={"resource": self.entity_type, "resource_id": instance.id,
                   "user_id": user_id, "action": "updated"},
        )
        return instance

    def delete(self, instance, *, user_id: int) -> None:
        """Soft-delete ``instance`` and purge its subtree.

        Direct children are removed with a SQL DELETE; the ON DELETE CASCADE
        foreign keys remove everything below them.
        """
        entity_id = instance.id

        def _do():
            snapshot = {name: _jsonable(getattr(instance, name)) for name in self.fields}
            self._log(
                instance, "deleted", user_id,
                {name: {"old": value, "new": None} for name, value in snapshot.items()},
            )
            for child_model, fk in self.children:
                (
                    db.session.query(child_model)
                    .filter(getattr(child_model, fk) == entity_id)
                    .delete(synchronize_session=False)
                )
            if self.soft_deletes:
                instance.soft_delete(user_id)
            else:
                db.session.delete(instance)
            db.session.flush()

        self._transaction("delete", {}, _do)
        logger.info(
            "%s deleted id=%s", self.title, entity_id,
            extra={"resource": self.entity_type, "resource_id": entity_id,
                   "user_id": user_id, "action": "deleted"},
        )

    # ── Internals ────────────────────────────────────────────────────────

    def _log(self, instance, action: str, user_id: int, diff: dict) -> None:
        write_audit(
            entity_type=self.entity_type,
            entity_id=instance.id,
            action=action,
            actor_user_id=user_id,
            diff=diff,
        )
        properties = {"attributes": {k: v["new"] for k, v in diff.items()}}
        if action != "created":
            properties["old"] = {k: v["old"] for k, v in diff.items()}
        write_activity(
            f"{self.title} {action}",
            subject_type=self.entity_type,
            subject_id=instance.id,
            causer_id=user_id,
            properties=properties,
        )

    def _transaction(self, verb: str, payload: dict, work: Callable):
        return run_in_transaction(verb, self.label, payload, work)


def run_in_transaction(verb: str, label: str, payload: dict, work: Callable):
    """Run ``work`` and commit; on any failure roll back and raise TransactionError."""
    try:
        result = work()
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        logger.exception("Failed to %s %s", verb, label)
        raise TransactionError(
            f"Failed to {verb} {label}: {exc}", old_input=old_input(payload),
        ) from exc
    return result


def _eager(model, path: str):
    """``"process.system"`` → chained selectinload options."""
    parts = path.split(".")
    current = model
    option = None
    for name in parts:
        attr = getattr(current, name)
        option = selectinload(attr) if option is None else option.selectinload(attr)
        current = attr.property.mapper.class_
    return option
