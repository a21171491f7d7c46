"""
Billing error taxonomy.

Every error is an HTTPException so routers can let it propagate untouched;
the response body is always {"detail": {"code": ..., "message": ...}}.
"""
from fastapi import HTTPException, status


class BillingError(HTTPException):
    """Base class for domain errors raised by the billing engine"""

    code = "billing_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **extra):
        self.message = message
        self.extra = extra
        detail = {"code": self.code, "message": message}
        if extra:
            detail.update({k: str(v) for k, v in extra.items()})
        super().__init__(status_code=self.status_code, detail=detail)

    def __str__(self):
        return f"{self.code}: {self.message}"


class InvalidLineItem(BillingError):
    code = "invalid_line_item"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ItemNotFound(BillingError):
    code = "item_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class MissingUnit(BillingError):
    code = "missing_unit"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class OverAllocation(BillingError):
    code = "over_allocation"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class OverPayment(BillingError):
    code = "over_payment"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class DocumentMismatch(BillingError):
    code = "document_mismatch"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class DocumentLocked(BillingError):
    code = "document_locked"
    status_code = status.HTTP_409_CONFLICT


class HasLinkedPayments(BillingError):
    code = "has_linked_payments"
    status_code = status.HTTP_409_CONFLICT


class Aborted(BillingError):
    """Lock timeout, deadlock or serialization failure; safe to retry from scratch"""
    code = "aborted"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class DocumentNotFound(BillingError):
    code = "document_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class PaymentNotFound(BillingError):
    code = "payment_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class CounterpartyNotFound(BillingError):
    code = "counterparty_not_found"
    status_code = status.HTTP_404_NOT_FOUND


class DuplicatePayment(BillingError):
    code = "duplicate_payment"
    status_code = status.HTTP_409_CONFLICT


class InvalidDocument(BillingError):
    """Request is well-formed but not valid for the target document type"""
    code = "invalid_document"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
