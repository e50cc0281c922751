# Overview: Sale and SaleItem models; immutable once written.

from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow, cents_to_str
from .base import new_id, forbid_change


class Sale(db.Model):
    """
    Sale aggregate: header + ordered line items.

    Created complete in a single transaction by services/sales_service.py
    together with the inventory movements it causes. Line items never change
    afterwards; corrections are made with new sales.

    INVARIANT: total_amount_cents == sum(item.total_price_cents)
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_company_status_created", "company_id", "status", "created_at"),
    )

    STATUS_COMPLETED = "completed"
    STATUS_CANCELLED = "cancelled"
    STATUS_REFUNDED = "refunded"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False, index=True)
    customer_id = db.Column(db.String(36), db.ForeignKey("customers.id"), nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_COMPLETED, index=True)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.Text, nullable=True)

    # Set when the sale was produced from a quotation
    quotation_id = db.Column(db.String(36), nullable=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    customer = db.relationship("Customer")
    items = db.relationship(
        "SaleItem",
        backref="sale",
        order_by="SaleItem.position",
        lazy=True,
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "company_id": self.company_id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "total_amount": cents_to_str(self.total_amount_cents),
            "notes": self.notes,
            "quotation_id": self.quotation_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """Individual line item on a sale. Immutable once the sale exists."""
    __tablename__ = "sale_items"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    sale_id = db.Column(db.String(36), db.ForeignKey("sales.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    # Per-line overrides of the product's SAT classifiers
    sat_product_key = db.Column(db.String(8), nullable=True)
    sat_unit_key = db.Column(db.String(3), nullable=True)
    description = db.Column(db.String(1000), nullable=True)

    product = db.relationship("Product")

    @property
    def effective_product_key(self) -> str | None:
        return self.sat_product_key or (self.product.sat_product_key if self.product else None)

    @property
    def effective_unit_key(self) -> str | None:
        return self.sat_unit_key or (self.product.sat_unit_key if self.product else None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "position": self.position,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "sat_product_key": self.sat_product_key,
            "sat_unit_key": self.sat_unit_key,
            "description": self.description,
        }


event.listen(SaleItem, "before_update", forbid_change("SaleItem"))
event.listen(SaleItem, "before_delete", forbid_change("SaleItem"))
