# Overview: Invoice and InvoiceItem models with stamp, claim and cancellation state.

from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow, cents_to_str
from .base import new_id, forbid_change


class Invoice(db.Model):
    """
    CFDI-style fiscal document derived from one Sale.

    STATE MACHINE (services/invoice_service.py):
        pending -> stamped -> cancelled

    INVARIANTS:
    - serie, folio and uuid are NULL while pending; set together on stamping
      and kept after cancellation.
    - At most one non-cancelled invoice per sale (enforced by the service
      under a lock on the sale row).
    - pac_claim_* marks an in-flight PAC call; status never changes until the
      PAC confirms.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_company_status", "company_id", "status"),
        db.Index("ix_invoices_sale_status", "sale_id", "status"),
    )

    STATUS_PENDING = "pending"
    STATUS_STAMPED = "stamped"
    STATUS_CANCELLED = "cancelled"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False, index=True)
    sale_id = db.Column(db.String(36), db.ForeignKey("sales.id"), nullable=False)
    customer_id = db.Column(db.String(36), db.ForeignKey("customers.id"), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING)

    # Receiver / payment terms
    payment_method = db.Column(db.String(3), nullable=False, default="PUE")
    payment_form = db.Column(db.String(2), nullable=False, default="01")
    cfdi_use = db.Column(db.String(4), nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="MXN")

    # Amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    taxes_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    # Assigned by the PAC on stamping
    serie = db.Column(db.String(25), nullable=True)
    folio = db.Column(db.String(40), nullable=True)
    uuid = db.Column(db.String(36), nullable=True, unique=True)
    pac_document_id = db.Column(db.String(64), nullable=True)
    verification_url = db.Column(db.String(512), nullable=True)
    stamped_at = db.Column(db.DateTime, nullable=True)

    # Cancellation
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancellation_motive = db.Column(db.String(2), nullable=True)
    cancellation_substitute_uuid = db.Column(db.String(36), nullable=True)
    cancellation_status = db.Column(db.String(64), nullable=True)

    # In-flight PAC call marker
    pac_claim_token = db.Column(db.String(36), nullable=True)
    pac_claim_operation = db.Column(db.String(16), nullable=True)
    pac_claimed_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    company = db.relationship("Company")
    customer = db.relationship("Customer")
    sale = db.relationship("Sale", backref=db.backref("invoices", lazy=True))
    items = db.relationship(
        "InvoiceItem",
        backref="invoice",
        order_by="InvoiceItem.position",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_stamped(self) -> bool:
        return self.uuid is not None

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "sale_id": self.sale_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_form": self.payment_form,
            "cfdi_use": self.cfdi_use,
            "currency": self.currency,
            "subtotal_cents": self.subtotal_cents,
            "taxes_cents": self.taxes_cents,
            "total_cents": self.total_cents,
            "subtotal": cents_to_str(self.subtotal_cents),
            "taxes": cents_to_str(self.taxes_cents),
            "total": cents_to_str(self.total_cents),
            "serie": self.serie,
            "folio": self.folio,
            "uuid": self.uuid,
            "verification_url": self.verification_url,
            "stamped_at": to_utc_z(self.stamped_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancellation_motive": self.cancellation_motive,
            "cancellation_status": self.cancellation_status,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class InvoiceItem(db.Model):
    """
    Invoice line built from a SaleItem with its tax breakdown.

    Never updated. Deleted only together with a discarded pending invoice.
    """
    __tablename__ = "invoice_items"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    invoice_id = db.Column(db.String(36), db.ForeignKey("invoices.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.String(36), db.ForeignKey("sale_items.id"), nullable=False)
    position = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    iva_rate_bps = db.Column(db.Integer, nullable=False)
    ieps_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    iva_cents = db.Column(db.Integer, nullable=False)
    ieps_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    sale_item = db.relationship("SaleItem")

    @property
    def taxes_cents(self) -> int:
        return self.iva_cents + self.ieps_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "sale_item_id": self.sale_item_id,
            "position": self.position,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "iva_rate_bps": self.iva_rate_bps,
            "ieps_rate_bps": self.ieps_rate_bps,
            "iva_cents": self.iva_cents,
            "ieps_cents": self.ieps_cents,
            "total_cents": self.total_cents,
        }


event.listen(InvoiceItem, "before_update", forbid_change("InvoiceItem"))
