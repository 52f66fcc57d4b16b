"""
Error taxonomy for the reconciliation service.

- ValidationError: malformed rule or comparison request, rejected before any work
- NotFoundError: unknown team, module, job, rule or comparison id
- UpstreamError: authoritative source or scraped store unreachable / malformed
- ParseError: a value could not be interpreted by a tolerance or transformation
  rule (never leaves the evaluator)
- InvalidTransitionError: a bulk job was asked to move backwards in its state machine

Each error carries a context dict so API handlers and bulk job results can
report enough detail for an operator to retry or investigate.
"""
from typing import Any, Dict, Optional


class ReconciliationError(Exception):
    """Base exception for all reconciliation errors."""

    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "detail": self.message,
            "context": self.context,
        }


class ValidationError(ReconciliationError):
    """Request or rule payload failed validation."""

    status_code = 400

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        invalid_fields: Optional[Dict[str, str]] = None,
    ):
        if invalid_fields:
            context = context or {}
            context["invalid_fields"] = invalid_fields
        super().__init__(message, context=context)


class NotFoundError(ReconciliationError):
    """Referenced entity does not exist."""

    status_code = 404

    def __init__(self, entity: str, identifier: Any):
        super().__init__(
            f"{entity} '{identifier}' not found",
            context={"entity": entity, "id": str(identifier)},
        )
        self.entity = entity
        self.identifier = identifier


class UpstreamError(ReconciliationError):
    """A data source failed or returned something we cannot use."""

    status_code = 502

    def __init__(self, source: str, message: str, context: Optional[Dict[str, Any]] = None):
        context = context or {}
        context["source"] = source
        super().__init__(f"{source}: {message}", context=context)
        self.source = source


class ParseError(ReconciliationError):
    """A raw value could not be interpreted as the rule requires."""

    status_code = 422

    def __init__(self, value: Any, expected: str):
        super().__init__(f"Cannot parse {value!r} as {expected}", context={"value": str(value)})
        self.value = value
        self.expected = expected


class InvalidTransitionError(ReconciliationError):
    """Bulk job state machine only moves forward."""

    status_code = 409

    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(
            f"Job {job_id} cannot move from '{current}' to '{target}'",
            context={"job_id": job_id, "current": current, "target": target},
        )
