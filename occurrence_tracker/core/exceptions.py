"""
Platform-wide exception hierarchy.

Every service raises one of these types so callers can map them once:

    NotFoundError     unknown occurrence / assignment / department / user id
    ValidationError   malformed input, rejected before any write
    ConflictError     duplicate value on a unique field (e.g. MRN)
    TransitionError   lifecycle action not allowed from the current status

None of them is raised after a write has been flushed: validation and lookups
run first, so a raised error means no state was mutated.

Usage:
    from occurrence_tracker.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Occurrence", resource_id=occurrence_id)
    raise ValidationError("At least one department must be selected",
                          details={"department_ids": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable model name (e.g. "Occurrence", "Department").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names; values
                 are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class TransitionError(Exception):
    """Raised when a lifecycle action is illegal for the current status.

    Args:
        code: Business identifier of the record (occurrence number).
        action: The attempted action (refer, respond, message, resolve).
        current_status: Status at the time of the attempt.
        reason: Optional extra explanation.
    """

    def __init__(self, code: str, action: str, current_status: str, reason: str | None = None) -> None:
        msg = f"Cannot '{action}' occurrence {code} (status={current_status})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.code = code
        self.action = action
        self.current_status = current_status
        self.reason = reason
