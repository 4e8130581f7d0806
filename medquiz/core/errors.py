"""
Typed errors raised by the content store.

Every error names the entity kind, the offending identifier and the invariant
that was violated, so the admin UI can highlight the exact field at fault.
"""
from typing import Any, Dict, Optional


class ContentError(Exception):
    """Base class for all content store failures."""

    status_code: int = 400
    error_type: str = "content_error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        kind: Optional[str] = None,
        identifier: Optional[str] = None,
        field: Optional[str] = None,
        invariant: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.identifier = identifier
        self.field = field
        self.invariant = invariant

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.error_type,
            "message": self.message,
            "kind": self.kind,
            "identifier": self.identifier,
            "field": self.field,
            "invariant": self.invariant,
            "retryable": self.retryable,
            "status_code": self.status_code,
        }


class NotFoundError(ContentError):
    status_code = 404
    error_type = "not_found"

    def __init__(self, kind: str, identifier: str, field: str = "external_id"):
        super().__init__(
            f"{kind.capitalize()} {identifier} not found",
            kind=kind,
            identifier=identifier,
            field=field,
            invariant="target must exist",
        )


class DuplicateIdentifierError(ContentError):
    status_code = 409
    error_type = "duplicate_identifier"

    def __init__(self, kind: str, identifier: str):
        super().__init__(
            f"{kind.capitalize()} with ID {identifier} already exists",
            kind=kind,
            identifier=identifier,
            field="external_id",
            invariant="external identifiers are unique per kind",
        )


class ReferenceViolationError(ContentError):
    status_code = 422
    error_type = "reference_violation"

    def __init__(self, kind: str, identifier: str, field: str):
        super().__init__(
            f"Referenced {kind.capitalize()} {identifier} does not exist",
            kind=kind,
            identifier=identifier,
            field=field,
            invariant="parent reference must name an existing parent",
        )


class SchemaViolationError(ContentError):
    status_code = 422
    error_type = "schema_violation"

    def __init__(
        self,
        violation: str,
        message: str,
        *,
        identifier: Optional[str] = None,
        field: str = "options",
    ):
        super().__init__(
            message,
            kind="question",
            identifier=identifier,
            field=field,
            invariant=violation,
        )
        self.violation = violation

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["violation"] = self.violation
        return data


class TransactionAbortedError(ContentError):
    status_code = 503
    error_type = "transaction_aborted"
    retryable = True

    def __init__(self, operation: str, kind: Optional[str] = None, identifier: Optional[str] = None):
        super().__init__(
            f"{operation} failed and was rolled back; no partial change occurred. Safe to retry.",
            kind=kind,
            identifier=identifier,
            invariant="multi-step writes are all-or-nothing",
        )
        self.operation = operation


class BatchLimitError(ContentError):
    status_code = 400
    error_type = "batch_limit"

    def __init__(self, message: str, count: int, limit: int):
        super().__init__(
            message,
            kind="lecture",
            field="lecture_ids",
            invariant=f"1 <= batch size <= {limit}",
        )
        self.count = count
        self.limit = limit
