"""
Field-rule validation for submitted payloads.

Each resource declares a tuple of ``Field`` rules; ``Validator.validate``
checks every field, collects one message per failing field and raises
``ValidationError`` (HTTP 422) with ``{field: [message]}`` details.  On
success it returns the cleaned payload: only declared fields, with dates
parsed and ids coerced to int.

Usage:
    validator = Validator((
        Field("name", "system name", required=True, max_length=255,
              unique=(System, "name")),
        Field("description", "system description", required=True),
    ))
    clean = validator.validate(request_data(), instance=system)
"""

from dataclasses import dataclass, field as dc_field
from typing import Any

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import Integer

from tracker.core.exceptions import ValidationError
from tracker.models import db
from tracker.utils.helpers import old_input, parse_date_input, parse_datetime, to_db_int

_TRUE = {True, 1, "1", "true", "on", "yes"}
_FALSE = {False, 0, "0", "false", "off", "no"}

DEFAULT_MESSAGES = {
    "required": "The {label} field is required.",
    "string": "The {label} must be a string.",
    "integer": "The {label} must be an integer.",
    "max": "The {label} may not be greater than {max} characters.",
    "min": "The {label} must be at least {min} characters.",
    "in": "The selected {label} is invalid.",
    "exists": "The selected {label} is invalid.",
    "date": "The {label} is not a valid date.",
    "after": "The {label} must be a date after {other}.",
    "unique": "The {label} has already been taken.",
    "email": "The {label} must be a valid email address.",
    "confirmed": "The {label} confirmation does not match.",
    "boolean": "The {label} field must be true or false.",
    "array": "The {label} must be an array.",
}


class _Invalid(Exception):
    def __init__(self, rule, **params):
        self.rule = rule
        self.params = params
        super().__init__(rule)


@dataclass(frozen=True)
class Field:
    """Rule set for one payload key.

    kind: "string" | "integer" | "date" | "datetime" | "email" | "boolean" | "list"
    exists: model whose non-deleted row must carry this id
    unique: (model, column); deleted rows count, the edited row does not
    each_exists: (model, column) every list item must match
    after: name of a date field this one must be strictly later than
    """

    name: str
    label: str | None = None
    required: bool = False
    kind: str = "string"
    max_length: int | None = None
    min_length: int | None = None
    choices: tuple | None = None
    exists: Any = None
    unique: tuple | None = None
    each_exists: tuple | None = None
    after: str | None = None
    confirmed: bool = False
    messages: dict = dc_field(default_factory=dict)

    @property
    def display(self) -> str:
        return self.label or self.name.replace("_", " ")

    def message(self, rule: str, **params) -> str:
        template = self.messages.get(rule) or DEFAULT_MESSAGES[rule]
        return template.format(label=self.display, **params)


def _blank(value) -> bool:
    if isinstance(value, str):
        return not value.strip()
    return value is None or (isinstance(value, (list, tuple, dict)) and len(value) == 0)


class Validator:
    def __init__(self, fields):
        self.fields = tuple(fields)
        self._by_name = {f.name: f for f in self.fields}

    def validate(self, data: dict | None, *, instance=None) -> dict:
        data = data if isinstance(data, dict) else {}
        clean: dict = {}
        errors: dict[str, list[str]] = {}

        for f in self.fields:
            if f.name not in data and not f.required:
                continue
            raw = data.get(f.name)
            if _blank(raw):
                if f.required:
                    errors[f.name] = [f.message("required")]
                elif f.name in data:
                    clean[f.name] = [] if f.kind == "list" else None
                continue
            try:
                clean[f.name] = self._check(f, raw, data, instance)
            except _Invalid as exc:
                errors[f.name] = [f.message(exc.rule, **exc.params)]

        # Cross-field ordering, only when both sides parsed
        for f in self.fields:
            if f.after and f.name in clean and f.name not in errors:
                other = clean.get(f.after)
                mine = clean[f.name]
                if other is not None and mine is not None and not mine > other:
                    errors[f.name] = [f.message("after", other=self._label(f.after))]

        if errors:
            raise ValidationError("The given data was invalid.", details=errors, old_input=old_input(data))
        return clean

    def _label(self, name: str) -> str:
        f = self._by_name.get(name)
        return f.display if f else name.replace("_", " ")

    # ── Per-field checks ─────────────────────────────────────────────────

    def _check(self, f: Field, raw, data: dict, instance):
        kind = f.kind
        if kind in ("string", "email"):
            value = self._check_string(f, raw)
            if kind == "email":
                value = _normalised_email(value)
        elif kind == "integer":
            value = _as_int(raw)
            if value is None:
                raise _Invalid("exists" if f.exists is not None else "integer")
        elif kind == "date":
            value = _parsed(parse_date_input, raw)
        elif kind == "datetime":
            value = _parsed(parse_datetime, raw)
        elif kind == "boolean":
            value = _as_bool(raw)
        elif kind == "list":
            if not isinstance(raw, (list, tuple)):
                raise _Invalid("array")
            value = list(raw)
            if f.each_exists is not None:
                self._check_each_exists(f, value)
        else:
            raise ValueError(f"Unknown field kind: {kind}")

        if f.choices is not None and value not in f.choices:
            raise _Invalid("in", values=", ".join(str(c) for c in f.choices))
        if f.exists is not None and not _row_exists(f.exists, value):
            raise _Invalid("exists")
        if f.unique is not None and _is_taken(f.unique, value, instance):
            raise _Invalid("unique")
        if f.confirmed and data.get(f"{f.name}_confirmation") != raw:
            raise _Invalid("confirmed")
        return value

    @staticmethod
    def _check_string(f: Field, raw) -> str:
        if not isinstance(raw, str):
            raise _Invalid("string")
        value = raw.strip()
        if f.max_length is not None and len(value) > f.max_length:
            raise _Invalid("max", max=f.max_length)
        if f.min_length is not None and len(value) < f.min_length:
            raise _Invalid("min", min=f.min_length)
        return value

    @staticmethod
    def _check_each_exists(f: Field, items: list):
        model, column = f.each_exists
        col = getattr(model, column)
        if isinstance(col.type, Integer):
            wanted = {_as_int(i) for i in items}
            if None in wanted:
                raise _Invalid("exists")
        else:
            wanted = {str(i) for i in items}
        found = {r[0] for r in db.session.query(col).filter(col.in_(wanted)).all()}
        if wanted - found:
            raise _Invalid("exists")


# ── Helpers ──────────────────────────────────────────────────────────────────

def _as_int(value):
    try:
        return to_db_int(value)
    except (TypeError, ValueError):
        return None


def _as_bool(value):
    if not isinstance(value, (bool, int, str)):
        raise _Invalid("boolean")
    if isinstance(value, str):
        value = value.strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise _Invalid("boolean")


def _parsed(parser, raw):
    try:
        return parser(raw)
    except (TypeError, ValueError):
        raise _Invalid("date") from None


def _row_exists(model, value) -> bool:
    query = db.session.query(model.id).filter(model.id == value)
    if hasattr(model, "deleted_at"):
        query = query.filter(model.deleted_at.is_(None))
    return query.first() is not None


def _is_taken(unique: tuple, value, instance) -> bool:
    model, column = unique
    query = db.session.query(model.id).filter(getattr(model, column) == value)
    if instance is not None and instance.id is not None:
        query = query.filter(model.id != instance.id)
    return query.first() is not None


def _normalised_email(value: str) -> str:
    try:
        return validate_email(value, check_deliverability=False).normalized
    except EmailNotValidError:
        raise _Invalid("email") from None
