"""
Typed failures raised by the procurement services.

Every business-rule violation leaves the operation boundary as one of these,
carrying a machine-readable ``kind`` plus enough context (field / line) for
an operator to correct the input and retry. The FastAPI app renders them as
JSON; nothing here is HTTP specific.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ProcurementError(Exception):
    """Base class for failures returned to the caller as ``kind`` + ``message``."""

    kind = "error"
    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        line_id: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.line_id = line_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "field": self.field,
            "line_id": self.line_id,
        }


class ValidationFailed(ProcurementError):
    """Missing or malformed input, rejected before any write."""

    kind = "validation"
    status_code = 400


class ConflictError(ProcurementError):
    """The request is well-formed but current state forbids it."""

    kind = "conflict"
    status_code = 409


class NotFoundError(ProcurementError):
    """A referenced PO / request / location / part does not exist or is inactive."""

    kind = "not_found"
    status_code = 404
