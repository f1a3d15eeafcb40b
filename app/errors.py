from __future__ import annotations

from typing import Any, Iterable


class RiskWorkflowError(Exception):
    """Base exception with user-friendly message."""

    http_status = 400
    code = "workflow_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.message}


class NotFoundError(RiskWorkflowError):
    http_status = 404
    code = "not_found"


class TreatmentNotFound(NotFoundError):
    pass


class InvalidStateTransition(RiskWorkflowError):
    """Operation is not legal for the record's current workflow status."""

    code = "invalid_state_transition"

    def __init__(self, operation: str, current: str | None, required: str | Iterable[str]) -> None:
        if isinstance(required, str):
            required_list = [required]
        else:
            required_list = sorted(str(x) for x in required)
        self.operation = operation
        self.current = current
        self.required = required_list
        super().__init__(
            f"Cannot {operation}: current status is '{current or 'none'}', "
            f"required {' or '.join(repr(x) for x in required_list)}"
        )

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload.update({"operation": self.operation, "current": self.current, "required": self.required})
        return payload


class ValidationError(RiskWorkflowError):
    http_status = 422
    code = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        payload["field"] = self.field
        return payload


class ConflictError(RiskWorkflowError):
    http_status = 409
    code = "conflict"


class IntegrityFault(RiskWorkflowError):
    """Internal invariant violated. Indicates a bug, not a caller error."""

    http_status = 500
    code = "integrity_fault"


class AssessmentNotFound(IntegrityFault):
    pass
