from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_partner_access
from app.schemas.billing import (
    AccessBlockStatus,
    InvoiceRead,
    PaymentRequest,
    PaymentStatusRead,
)
from app.schemas.common import ListResponse
from app.services import billing as billing_service

router = APIRouter(
    prefix="/partners/{partner_id}",
    tags=["invoices"],
    dependencies=[Depends(require_partner_access)],
)


@router.get("/invoices", response_model=ListResponse[InvoiceRead])
def list_invoices(
    partner_id: UUID,
    status: str | None = Query(default=None, pattern="^(pending|paid|overdue)$"),
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return billing_service.invoices.list_response(
        db, partner_id, status, order_by, order_dir, limit, offset
    )


@router.get("/invoices/{invoice_id}", response_model=InvoiceRead)
def get_invoice(partner_id: UUID, invoice_id: UUID, db: Session = Depends(get_db)):
    return billing_service.invoices.get(db, partner_id, invoice_id)


@router.post("/invoices/{invoice_id}/payment", response_model=InvoiceRead)
def generate_payment(
    partner_id: UUID,
    invoice_id: UUID,
    payload: PaymentRequest,
    db: Session = Depends(get_db),
):
    return billing_service.invoice_payments.generate(
        db, partner_id, invoice_id, payload.method, payload.payer
    )


@router.post("/invoices/{invoice_id}/payment/check", response_model=PaymentStatusRead)
def check_payment(partner_id: UUID, invoice_id: UUID, db: Session = Depends(get_db)):
    return billing_service.invoice_payments.check_status(db, partner_id, invoice_id)


@router.get("/access-block", response_model=AccessBlockStatus)
def access_block(partner_id: UUID, db: Session = Depends(get_db)):
    return billing_service.access_block_for_partner(db, partner_id)
