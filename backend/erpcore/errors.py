# Overview: Closed set of typed business errors shared by services and routes.

"""
Error taxonomy for the sale -> invoice core.

Every business failure is one of the classes below. Each carries:
- code:       stable machine-readable tag (used by UIs and tests)
- retryable:  whether repeating the same call may succeed without changes
- details:    structured data needed to act on the failure

Routes map these to HTTP statuses via ``http_status``. Anything that is not a
CoreError is an infrastructure failure and is logged + returned as 500.
"""

from __future__ import annotations


class CoreError(Exception):
    """Base class for every typed business failure."""
    code = "CORE_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "retryable": self.retryable,
            "details": self.details,
        }


class InvalidRequest(CoreError):
    """Malformed input: fix the request and try again."""
    code = "INVALID_REQUEST"
    http_status = 400


class NotFound(CoreError):
    """Entity absent or owned by a different tenant (never distinguishes the two)."""
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity: str, entity_id):
        super().__init__(
            f"{entity} {entity_id} not found",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class InsufficientStock(CoreError):
    code = "INSUFFICIENT_STOCK"
    http_status = 409

    def __init__(self, product_id: str, product_name: str | None, requested: int, available: int):
        label = product_name or product_id
        super().__init__(
            f"Insufficient stock for product {label}: requested {requested}, available {available}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "requested": requested,
                "available": available,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ValidationFailed(CoreError):
    """Fiscal validation blocked the operation; ``errors`` holds every blocking issue."""
    code = "VALIDATION_FAILED"
    http_status = 422

    def __init__(self, errors: list, warnings: list | None = None):
        super().__init__(
            f"Invoice failed fiscal validation with {len(errors)} error(s)",
            details={
                "errors": [issue.to_dict() for issue in errors],
                "warnings": [issue.to_dict() for issue in (warnings or [])],
            },
        )
        self.errors = list(errors)
        self.warnings = list(warnings or [])


class AlreadyConverted(CoreError):
    code = "ALREADY_CONVERTED"
    http_status = 409

    def __init__(self, quotation_id: str, sale_id: str | None):
        super().__init__(
            f"Quotation {quotation_id} was already converted",
            details={"quotation_id": quotation_id, "sale_id": sale_id},
        )
        self.sale_id = sale_id


class DuplicateInvoice(CoreError):
    code = "DUPLICATE_INVOICE"
    http_status = 409

    def __init__(self, sale_id: str, invoice_id: str):
        super().__init__(
            f"Sale {sale_id} already has an active invoice {invoice_id}",
            details={"sale_id": sale_id, "invoice_id": invoice_id},
        )
        self.invoice_id = invoice_id


class InvalidState(CoreError):
    """Requested transition is not allowed from the entity's current status."""
    code = "INVALID_STATE"
    http_status = 409

    def __init__(self, message: str, *, current_status: str | None = None):
        super().__init__(message, details={"current_status": current_status})
        self.current_status = current_status


class OperationInProgress(CoreError):
    """Another PAC call for the same invoice has not finished yet."""
    code = "OPERATION_IN_PROGRESS"
    http_status = 409
    retryable = True


class CancellationPending(CoreError):
    """The PAC accepted the cancellation request but the receiver has not confirmed it."""
    code = "CANCELLATION_PENDING"
    http_status = 202
    retryable = True


class PacUnavailable(CoreError):
    """
    The certification provider failed or timed out. Local state is unchanged.

    outcome_unknown=True means the request may have reached the PAC (timeout);
    re-read the invoice before retrying.
    """
    code = "PAC_UNAVAILABLE"
    http_status = 503
    retryable = True

    def __init__(self, reason: str, *, outcome_unknown: bool = False):
        super().__init__(
            f"Certification provider error: {reason}",
            details={"reason": reason, "outcome_unknown": outcome_unknown},
        )
        self.reason = reason
        self.outcome_unknown = outcome_unknown


class TransactionFailed(CoreError):
    """Atomic operation failed (e.g. concurrent conflict). Safe to retry from scratch."""
    code = "TRANSACTION_FAILED"
    http_status = 503
    retryable = True


class ImmutableRecordError(RuntimeError):
    """Raised by ORM guards when code tries to change an append-only row."""
