"""Invoice payment generation and reconciliation against the gateway."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.errors import GatewayError, ValidationError
from app.models.billing import Invoice, InvoiceCharge, PaymentMethod, PaymentStatus
from app.models.types import utcnow
from app.schemas.billing import PayerIn
from app.services.billing.invoices import invoices
from app.services.common import validate_enum, validate_payload
from app.services.payment_gateway import get_payment_gateway, payment_data_from

logger = logging.getLogger(__name__)

APPROVED = "approved"
# Gateway statuses after which a charge can never be paid.
CLOSED_STATUSES = frozenset(
    {"cancelled", "rejected", "expired", "refunded", "charged_back"}
)


def payment_idempotency_key(
    invoice: Invoice, method: PaymentMethod, attempt: int = 1
) -> str:
    key = f"invoice-{invoice.id}-{method.value}"
    return key if attempt == 1 else f"{key}-{attempt}"


def _is_open(charge: InvoiceCharge) -> bool:
    return charge.status != APPROVED and charge.status not in CLOSED_STATUSES


def _make_current(invoice: Invoice, charge: InvoiceCharge) -> None:
    invoice.payment_id = charge.payment_id
    invoice.payment_method = charge.payment_method
    invoice.payment_data = charge.payment_data


class InvoicePayments:
    def __init__(self, gateway=None) -> None:
        self._gateway = gateway

    @property
    def gateway(self):
        return self._gateway or get_payment_gateway()

    def generate(
        self,
        db: Session,
        partner_id: str,
        invoice_id: str,
        method: str,
        payer: PayerIn | dict | None = None,
        now: datetime | None = None,
    ) -> Invoice:
        """Open a PIX or boleto charge for the invoice's outstanding amount.

        A still-payable charge of the same method is handed back instead of
        opening another. Once that charge is cancelled, rejected or expired
        at the gateway a fresh one is opened under a new idempotency key.

        Creation is not retried here. A timeout leaves the outcome unknown;
        calling again reuses the same idempotency key, so the gateway hands
        back the original charge instead of opening a second one.
        """
        now = now or utcnow()
        invoice = invoices.get(db, partner_id, invoice_id)
        payment_method = validate_enum(method, PaymentMethod, "payment method")
        if payment_method == PaymentMethod.credits:
            raise ValidationError("Payment method must be pix or boleto")
        if invoice.payment_status == PaymentStatus.paid:
            raise ValidationError("Invoice is already paid")
        if invoice.total_amount <= 0:
            raise ValidationError("Invoice has no amount due")
        payer_in = validate_payload(PayerIn, payer) if payer is not None else None

        current = next(
            (c for c in reversed(invoice.charges) if c.payment_method == payment_method),
            None,
        )
        if current is not None and _is_open(current):
            status = self.gateway.get_payment_status(current.payment_id)
            self._record_status(db, invoice, current, status, now)
            if invoice.payment_status == PaymentStatus.paid:
                return invoice
            if _is_open(current):
                if invoice.payment_id != current.payment_id:
                    _make_current(invoice, current)
                    db.commit()
                    db.refresh(invoice)
                return invoice

        attempt = len(invoice.charges) + 1
        key = payment_idempotency_key(invoice, payment_method, attempt)
        description = f"Platform fees invoice {invoice.id}"
        reference = f"invoice_{invoice.id}"
        if payment_method == PaymentMethod.pix:
            email = payer_in.email if payer_in else (invoice.partner_info or {}).get("email")
            if not email:
                raise ValidationError("A payer email is required for PIX")
            response = self.gateway.create_pix_payment(
                invoice.total_amount,
                description,
                email,
                idempotency_key=key,
                external_reference=reference,
            )
        else:
            if (
                payer_in is None
                or not payer_in.first_name
                or not payer_in.last_name
                or payer_in.identification is None
            ):
                raise ValidationError(
                    "Boleto requires payer email, first_name, last_name and identification"
                )
            response = self.gateway.create_boleto_payment(
                invoice.total_amount,
                description,
                payer_in.model_dump(),
                idempotency_key=key,
                external_reference=reference,
            )

        charge = InvoiceCharge(
            attempt=attempt,
            payment_id=str(response["id"]),
            payment_method=payment_method,
            idempotency_key=key,
            status=str(response.get("status") or "pending"),
            payment_data=payment_data_from(response),
        )
        invoice.charges.append(charge)
        _make_current(invoice, charge)
        invoice.payment_status = PaymentStatus.pending
        try:
            db.commit()
        except IntegrityError:
            # A concurrent request stored the same gateway charge first.
            db.rollback()
            logger.info("Charge %s already recorded", charge.payment_id)
        db.refresh(invoice)
        logger.info(
            "Generated %s payment %s (attempt %s)",
            payment_method.value,
            invoice.payment_id,
            attempt,
            extra={"partner_id": invoice.partner_id, "invoice_id": invoice.id},
        )
        return invoice

    @staticmethod
    def _record_status(
        db: Session,
        invoice: Invoice,
        charge: InvoiceCharge | None,
        status: str,
        now: datetime,
    ) -> bool:
        """Store a charge's gateway status; returns True when it paid the invoice."""
        changed = charge is not None and charge.status != status
        if charge is not None:
            charge.status = status
        paid = status == APPROVED and invoice.payment_status != PaymentStatus.paid
        if paid:
            invoice.payment_status = PaymentStatus.paid
            invoice.paid_at = now
            if charge is not None:
                _make_current(invoice, charge)
        if changed or paid:
            db.commit()
            db.refresh(invoice)
        if paid:
            logger.info(
                "Invoice paid via %s",
                invoice.payment_id,
                extra={"partner_id": invoice.partner_id, "invoice_id": invoice.id},
            )
        return paid

    @staticmethod
    def _tracked_payments(
        invoice: Invoice, include_current: bool = False
    ) -> list[tuple[str, InvoiceCharge | None]]:
        """Payment ids worth asking the gateway about, latest charge first."""
        by_id = {charge.payment_id: charge for charge in invoice.charges}
        ids = [
            charge.payment_id
            for charge in reversed(invoice.charges)
            if _is_open(charge)
        ]
        current = invoice.payment_id
        if current and current not in ids and (include_current or current not in by_id):
            ids.insert(0, current)
        return [(payment_id, by_id.get(payment_id)) for payment_id in ids]

    def check_status(
        self,
        db: Session,
        partner_id: str,
        invoice_id: str,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Poll the gateway for every open charge of the invoice.

        Only an ``approved`` answer marks the invoice paid, whichever charge
        it comes from.
        """
        now = now or utcnow()
        invoice = invoices.get(db, partner_id, invoice_id)
        if not invoice.payment_id:
            raise ValidationError("Invoice has no payment to check")
        statuses: dict[str, str] = {}
        for payment_id, charge in self._tracked_payments(invoice, include_current=True):
            status = self.gateway.get_payment_status(payment_id)
            statuses[payment_id] = status
            self._record_status(db, invoice, charge, status, now)
        return {
            "invoice_id": invoice.id,
            "payment_id": invoice.payment_id,
            "gateway_status": statuses.get(invoice.payment_id),
            "payment_status": invoice.status_at(now).value,
            "paid_at": invoice.paid_at,
        }

    def reconcile_notification(
        self, db: Session, payment_id: str, now: datetime | None = None
    ) -> Invoice | None:
        """Handle a gateway payment notification for an invoice charge.

        The status is always re-fetched; the notification body is not trusted.
        Any charge ever issued for the invoice is honoured.
        """
        invoice = invoices.get_by_payment_id(db, payment_id)
        if invoice is None:
            return None
        charge = next(
            (c for c in invoice.charges if c.payment_id == str(payment_id)), None
        )
        status = self.gateway.get_payment_status(str(payment_id))
        self._record_status(db, invoice, charge, status, now or utcnow())
        return invoice

    def poll_pending(self, db: Session, now: datetime | None = None) -> dict[str, int]:
        """Follow up every open charge of every unpaid invoice.

        This is how charges whose creation or notification timed out get
        resolved.
        """
        now = now or utcnow()
        pending = (
            db.query(Invoice)
            .filter(Invoice.payment_status == PaymentStatus.pending)
            .filter(Invoice.payment_id.is_not(None))
            .order_by(Invoice.created_at.asc())
            .all()
        )
        result = {"checked": 0, "paid": 0, "errors": 0}
        for invoice in pending:
            for payment_id, charge in self._tracked_payments(invoice):
                result["checked"] += 1
                try:
                    status = self.gateway.get_payment_status(payment_id)
                except GatewayError as exc:
                    result["errors"] += 1
                    logger.warning(
                        "Payment status check failed: %s",
                        exc.message,
                        extra={"invoice_id": invoice.id, "partner_id": invoice.partner_id},
                    )
                    continue
                if self._record_status(db, invoice, charge, status, now):
                    result["paid"] += 1
                    break
        return result


invoice_payments = InvoicePayments()
