from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow, cents_to_str
from .base import new_id


class Quotation(db.Model):
    """
    Non-binding price proposal. Same shape as a Sale.

    Lifecycle: pending -> accepted/rejected/expired, accepted -> rejected/expired,
    pending/accepted -> converted (exactly once, terminal). See
    services/quotation_service.py.
    """
    __tablename__ = "quotations"
    __table_args__ = (
        db.Index("ix_quotations_company_status", "company_id", "status"),
    )

    STATUS_PENDING = "pending"
    STATUS_ACCEPTED = "accepted"
    STATUS_REJECTED = "rejected"
    STATUS_EXPIRED = "expired"
    STATUS_CONVERTED = "converted"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False, index=True)
    customer_id = db.Column(db.String(36), db.ForeignKey("customers.id"), nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING)
    expiry_date = db.Column(db.DateTime, nullable=True)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    converted_sale_id = db.Column(db.String(36), db.ForeignKey("sales.id"), nullable=True)
    converted_at = db.Column(db.DateTime, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    customer = db.relationship("Customer")
    items = db.relationship(
        "QuotationItem",
        backref="quotation",
        order_by="QuotationItem.position",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "status": self.status,
            "expiry_date": to_utc_z(self.expiry_date),
            "total_amount_cents": self.total_amount_cents,
            "total_amount": cents_to_str(self.total_amount_cents),
            "notes": self.notes,
            "converted_sale_id": self.converted_sale_id,
            "converted_at": to_utc_z(self.converted_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class QuotationItem(db.Model):
    __tablename__ = "quotation_items"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    quotation_id = db.Column(db.String(36), db.ForeignKey("quotations.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    sat_product_key = db.Column(db.String(8), nullable=True)
    sat_unit_key = db.Column(db.String(3), nullable=True)
    description = db.Column(db.String(1000), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quotation_id": self.quotation_id,
            "position": self.position,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "sat_product_key": self.sat_product_key,
            "sat_unit_key": self.sat_unit_key,
            "description": self.description,
        }
