"""
Application-wide exception hierarchy.

Services raise these; ``tracker.create_app`` registers one error handler per
type so every blueprint returns the same status code and body shape.

Usage:
    from tracker.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="System", resource_id="billing")
    raise ValidationError("The given data was invalid.", details={"name": ["..."]})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist (or is soft-deleted).

    Args:
        resource: Human-readable model/entity name (e.g. "System", "Process").
        resource_id: The PK or slug that was looked up. Included in logs.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when submitted input fails the resource's rule set.

    Maps to HTTP 422.

    Args:
        message: Human-readable summary.
        details: Field-keyed error messages, ``{field: [message, ...]}``.
        old_input: The submitted payload, echoed back so a form can be re-filled.
    """

    def __init__(self, message: str, details: dict | None = None, old_input: dict | None = None) -> None:
        self.details = details or {}
        self.old_input = old_input
        super().__init__(message)


class InvalidQueryError(Exception):
    """Raised for filter/sort keys outside a resource's allow-list, or bad scope arguments.

    Maps to HTTP 400.
    """

    def __init__(self, message: str, allowed: list[str] | None = None) -> None:
        self.allowed = allowed or []
        super().__init__(message)


class TransactionError(Exception):
    """Raised when the transactional write path fails and was rolled back.

    The message embeds the underlying exception text, e.g.
    ``"Failed to create system: UNIQUE constraint failed: systems.slug"``.

    Maps to HTTP 500.
    """

    def __init__(self, message: str, old_input: dict | None = None) -> None:
        self.old_input = old_input
        super().__init__(message)
