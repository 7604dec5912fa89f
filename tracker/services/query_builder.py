"""
Query-string driven filtering, sorting and pagination.

    GET /api/v1/processes?filter[name]=pay&filter[created_between]=2025-01-01,2025-01-31&sort=-name&page=2

- ``filter[<key>]=<value>`` must name an allowed filter, else InvalidQueryError (400)
- ``sort=<col>,-<col>`` must name allowed sorts; ``-`` means descending
- ``page`` is 1-based; page size is fixed per endpoint

Filter kinds:
    partial  case-insensitive ``LIKE %value%``; comma values are OR-ed
    exact    equality; comma values become ``IN``
    scope    ``Model.scope_<name>(query, *values)`` with the value split on commas
"""

import math
import re

from sqlalchemy import Integer, or_

from tracker.core.exceptions import InvalidQueryError
from tracker.utils.helpers import DB_INT_MAX, to_db_int

_FILTER_KEY = re.compile(r"^filter\[(\w+)\]$")


class AllowedFilter:
    PARTIAL = "partial"
    EXACT = "exact"
    SCOPE = "scope"

    def __init__(self, name: str, kind: str = PARTIAL, column: str | None = None):
        self.name = name
        self.kind = kind
        self.column = column or name

    @classmethod
    def partial(cls, name, column=None):
        return cls(name, cls.PARTIAL, column)

    @classmethod
    def exact(cls, name, column=None):
        return cls(name, cls.EXACT, column)

    @classmethod
    def scope(cls, name):
        return cls(name, cls.SCOPE)

    def apply(self, model, query, value: str):
        values = [v.strip() for v in value.split(",")]
        if self.kind == self.SCOPE:
            method = getattr(model, f"scope_{self.name}")
            try:
                return method(query, *values)
            except (TypeError, ValueError) as exc:
                raise InvalidQueryError(f"Invalid value for filter `{self.name}`: {exc}") from exc

        column = getattr(model, self.column)
        values = [v for v in values if v != ""]
        if not values:
            return query
        if self.kind == self.EXACT:
            if isinstance(column.type, Integer):
                try:
                    values = [to_db_int(v) for v in values]
                except ValueError as exc:
                    raise InvalidQueryError(f"Filter `{self.name}` expects an integer.") from exc
            if len(values) == 1:
                return query.filter(column == values[0])
            return query.filter(column.in_(values))
        return query.filter(or_(*[column.ilike(f"%{v}%") for v in values]))

    def __repr__(self):
        return f"<AllowedFilter {self.kind}:{self.name}>"


def _normalise_filters(filters) -> dict[str, AllowedFilter]:
    out = {}
    for f in filters:
        if isinstance(f, str):
            f = AllowedFilter.partial(f)
        out[f.name] = f
    return out


class QueryBuilder:
    """Applies allow-listed filters and sorts from a request's query args."""

    def __init__(self, model, query, *, filters=(), sorts=(), default_sort="-created_at"):
        self.model = model
        self.query = query
        self.filters = _normalise_filters(filters)
        self.sorts = tuple(sorts)
        self.default_sort = default_sort

    @staticmethod
    def requested_filters(args) -> dict[str, str]:
        requested = {}
        for key in args.keys():
            match = _FILTER_KEY.match(key)
            if match:
                requested[match.group(1)] = args.get(key, "")
        return requested

    def apply(self, args):
        query = self.query
        requested = self.requested_filters(args)

        unknown = sorted(set(requested) - set(self.filters))
        if unknown:
            allowed = sorted(self.filters)
            raise InvalidQueryError(
                f"Requested filter(s) `{', '.join(unknown)}` are not allowed. "
                f"Allowed filter(s) are `{', '.join(allowed)}`.",
                allowed=allowed,
            )
        for name, value in requested.items():
            if value is None or value == "":
                continue
            query = self.filters[name].apply(self.model, query, value)

        return self._apply_sorts(query, args.get("sort") or self.default_sort)

    def _apply_sorts(self, query, sort_param: str):
        parts = [p.strip() for p in sort_param.split(",") if p.strip()]
        unknown = [p.lstrip("-") for p in parts if p.lstrip("-") not in self.sorts]
        if unknown:
            raise InvalidQueryError(
                f"Requested sort(s) `{', '.join(unknown)}` is not allowed. "
                f"Allowed sort(s) are `{', '.join(self.sorts)}`.",
                allowed=list(self.sorts),
            )
        descending = False
        for part in parts:
            descending = part.startswith("-")
            column = getattr(self.model, part.lstrip("-"))
            query = query.order_by(column.desc() if descending else column.asc())
        # Stable order for rows sharing the sort key
        return query.order_by(self.model.id.desc() if descending else self.model.id.asc())


def paginate(query, args, per_page: int) -> tuple[list, dict]:
    """Fixed-size page of ``query``; returns ``(items, meta)``."""
    try:
        page = max(int(args.get("page", 1)), 1)
    except (TypeError, ValueError):
        page = 1
    # Keep the OFFSET within what the database accepts
    page = min(page, DB_INT_MAX // per_page)
    total = query.order_by(None).count()
    last_page = max(math.ceil(total / per_page), 1)
    items = query.limit(per_page).offset((page - 1) * per_page).all()
    meta = {
        "current_page": page,
        "per_page": per_page,
        "total": total,
        "last_page": last_page,
        "from": (page - 1) * per_page + 1 if items else None,
        "to": (page - 1) * per_page + len(items) if items else None,
        "query": {k: v for k, v in args.items()},
    }
    return items, meta
