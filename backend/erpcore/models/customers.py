from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .base import new_id


class Customer(db.Model):
    """
    Customer master data, owned by the catalog collaborator.

    MULTI-TENANT: Customers are scoped to companies via company_id.
    The core reads the fiscal columns to name the receiver on an invoice;
    a customer without an RFC is invoiced as the general public.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_company_name", "company_id", "name"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    # Fiscal data (all optional until the customer asks for an invoice)
    rfc = db.Column(db.String(13), nullable=True)
    legal_name = db.Column(db.String(255), nullable=True)
    tax_regime = db.Column(db.String(3), nullable=True)
    cfdi_use = db.Column(db.String(4), nullable=True)
    fiscal_address = db.Column(db.String(255), nullable=True)
    fiscal_postal_code = db.Column(db.String(5), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    company = db.relationship("Company", backref=db.backref("customers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "rfc": self.rfc,
            "legal_name": self.legal_name,
            "tax_regime": self.tax_regime,
            "cfdi_use": self.cfdi_use,
            "fiscal_address": self.fiscal_address,
            "fiscal_postal_code": self.fiscal_postal_code,
            "created_at": to_utc_z(self.created_at),
        }
