"""
FastAPI routers for billing documents.

Every document type gets the same set of endpoints; ``build_document_router``
creates one router per type.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional, Type
from uuid import UUID
from datetime import date
from pydantic import BaseModel

from app.core.config import settings
from app.database.database import get_db
from app.dependencies.companyDependencies import TenantContext
from app.modules.documents.models import (
    CreditNote, DebitNote, Document, Invoice, PurchaseBill, PurchaseOrder
)
from app.modules.documents.schemas import DocumentCreate, DocumentDetail, DocumentList, DocumentUpdate
from app.modules.documents.service import DocumentService
from app.modules.documents.status import DocumentStatus
from app.modules.payments.schemas import DocumentPaymentHistory
from app.modules.payments.service import PaymentService


class ConvertToBillRequest(BaseModel):
    issue_date: Optional[date] = None
    due_date: Optional[date] = None


def build_document_router(model: Type[Document], prefix: str, tag: str) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[tag])
    label = model.__name__

    @router.post("/", response_model=DocumentDetail, status_code=status.HTTP_201_CREATED,
                 summary=f"Create {label}")
    def create_document(
        data: DocumentCreate,
        ctx: TenantContext,
        db: Session = Depends(get_db)
    ):
        """Create the document, computing taxes and totals from the catalog."""
        return DocumentService(db, model).create_document(data, ctx)

    @router.get("/", response_model=DocumentList, summary=f"List {label} documents")
    def list_documents(
        ctx: TenantContext,
        limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
        offset: int = Query(0, ge=0),
        status: Optional[DocumentStatus] = Query(None, description="Filter by status"),
        contact_id: Optional[UUID] = Query(None, description="Filter by counterparty"),
        date_from: Optional[date] = Query(None),
        date_to: Optional[date] = Query(None),
        db: Session = Depends(get_db)
    ):
        return DocumentService(db, model).list_documents(
            ctx.tenant_id, limit=limit, offset=offset, status=status,
            contact_id=contact_id, date_from=date_from, date_to=date_to
        )

    @router.get("/{document_id}", response_model=DocumentDetail, summary=f"Get {label}")
    def get_document(
        document_id: UUID,
        ctx: TenantContext,
        db: Session = Depends(get_db)
    ):
        return DocumentService(db, model).get_document(document_id, ctx.tenant_id)

    @router.put("/{document_id}", response_model=DocumentDetail, summary=f"Update {label}")
    def update_document(
        document_id: UUID,
        data: DocumentUpdate,
        ctx: TenantContext,
        db: Session = Depends(get_db)
    ):
        """
        Replace all items and settings. Refused once any payment has been
        applied to the document.
        """
        return DocumentService(db, model).update_document(document_id, data, ctx)

    @router.post("/{document_id}/cancel", response_model=DocumentDetail, summary=f"Cancel {label}")
    def cancel_document(
        document_id: UUID,
        ctx: TenantContext,
        db: Session = Depends(get_db)
    ):
        return DocumentService(db, model).cancel_document(document_id, ctx)

    @router.delete("/{document_id}", summary=f"Delete {label}")
    def delete_document(
        document_id: UUID,
        ctx: TenantContext,
        db: Session = Depends(get_db)
    ):
        """Soft delete. Refused while payments are linked to the document."""
        return DocumentService(db, model).delete_document(document_id, ctx)

    if model.payment_direction is not None:
        @router.get("/{document_id}/payments", response_model=DocumentPaymentHistory,
                    summary=f"Payments applied to a {label}")
        def get_document_payments(
            document_id: UUID,
            ctx: TenantContext,
            db: Session = Depends(get_db)
        ):
            document = DocumentService(db, model).get_document(document_id, ctx.tenant_id)
            return PaymentService(db).document_payments(document)

    if model is PurchaseOrder:
        @router.post("/{document_id}/convert-to-bill", response_model=DocumentDetail,
                     status_code=status.HTTP_201_CREATED)
        def convert_to_bill(
            document_id: UUID,
            ctx: TenantContext,
            data: Optional[ConvertToBillRequest] = None,
            db: Session = Depends(get_db)
        ):
            """Create a purchase bill from an open purchase order."""
            data = data or ConvertToBillRequest()
            return DocumentService(db, model).convert_purchase_order(
                document_id, ctx, issue_date=data.issue_date, due_date=data.due_date
            )

    return router


invoices_router = build_document_router(Invoice, "/invoices", "Invoices")
purchase_bills_router = build_document_router(PurchaseBill, "/purchase-bills", "Purchase Bills")
purchase_orders_router = build_document_router(PurchaseOrder, "/purchase-orders", "Purchase Orders")
credit_notes_router = build_document_router(CreditNote, "/credit-notes", "Credit Notes")
debit_notes_router = build_document_router(DebitNote, "/debit-notes", "Debit Notes")
