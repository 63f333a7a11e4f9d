"""
Portal-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from arb_portal.core.exceptions import NotFoundError, NotEligible

    raise NotFoundError(resource="ArbRequest", resource_id=request_id)
    raise NotEligible("Owner cannot vote on their own request", reason="owner")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "ArbRequest").
        resource_id: The PK that was looked up.
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
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── ARB workflow errors ──────────────────────────────────────────────────────


class ArbWorkflowError(Exception):
    """Base class for every ARB voting-workflow rejection.

    Subclasses pin a machine-readable ``code`` and an HTTP ``status``.  A
    rejected operation has performed no mutation.
    """

    code = "ERR_ARB_WORKFLOW"
    status = 409

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidTransition(ArbWorkflowError):
    """Status change not on the lifecycle graph, or not allowed for the actor."""

    code = "ERR_INVALID_TRANSITION"
    status = 409

    def __init__(self, from_status: str, to_status: str, message: str | None = None) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            message or f"Transition {from_status} → {to_status} is not allowed",
            details={"from_status": from_status, "to_status": to_status},
        )


class NotEligible(ArbWorkflowError):
    code = "ERR_NOT_ELIGIBLE"
    status = 403

    def __init__(self, message: str, *, reason: str) -> None:
        self.reason = reason
        super().__init__(message, details={"reason": reason})


class WrongStage(ArbWorkflowError):
    code = "ERR_WRONG_STAGE"
    status = 409


class AlreadyResolved(ArbWorkflowError):
    code = "ERR_ALREADY_RESOLVED"
    status = 409


class Deadlocked(ArbWorkflowError):
    """Stage has no active voters; needs a manual decision or the deadline."""

    code = "ERR_DEADLOCKED"
    status = 409


class StorageConflict(ArbWorkflowError):
    """A concurrent writer won the race twice in a row.  Safe to retry."""

    code = "ERR_STORAGE_CONFLICT"
    status = 503
