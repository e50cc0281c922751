from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .base import new_id, forbid_change


class Product(db.Model):
    """
    Product master data, owned by the catalog collaborator.

    MULTI-TENANT: Products are scoped to companies via company_id.

    STOCK: ``stock`` is a stored quantity. The only writer in this core is the
    inventory ledger (services/inventory_service.py), which appends a Movement
    for every change. When use_stock is set the ledger keeps stock >= 0.

    version_id gives optimistic locking: two transactions that read the same
    stock and both write it cannot both commit.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("company_id", "sku", name="uq_products_company_sku"),
        db.Index("ix_products_company_name", "company_id", "name"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)

    use_stock = db.Column(db.Boolean, nullable=False, default=True)
    stock = db.Column(db.Integer, nullable=False, default=0)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=True)

    # SAT classifiers (c_ClaveProdServ / c_ClaveUnidad)
    sat_product_key = db.Column(db.String(8), nullable=True)
    sat_unit_key = db.Column(db.String(3), nullable=True)
    sale_unit = db.Column(db.String(32), nullable=True)

    # Tax rates in basis points (1600 = 16%). NULL IVA falls back to DEFAULT_IVA_RATE_BPS.
    iva_rate_bps = db.Column(db.Integer, nullable=True)
    ieps_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    company = db.relationship("Company", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} company_id={self.company_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "sku": self.sku,
            "name": self.name,
            "use_stock": self.use_stock,
            "stock": self.stock,
            "price_cents": self.price_cents,
            "sat_product_key": self.sat_product_key,
            "sat_unit_key": self.sat_unit_key,
            "sale_unit": self.sale_unit,
            "iva_rate_bps": self.iva_rate_bps,
            "ieps_rate_bps": self.ieps_rate_bps,
            "version_id": self.version_id,
        }


class Movement(db.Model):
    """
    Immutable record of one stock change.

    Written only by the inventory ledger, in the same DB transaction as the
    stock update it describes. Never updated or deleted (ORM guards below).
    """
    __tablename__ = "movements"
    __table_args__ = (
        db.Index("ix_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    TYPE_INBOUND = "inbound"
    TYPE_OUTBOUND = "outbound"

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)  # always positive; direction is in type
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)
    note = db.Column(db.String(255), nullable=True)

    # Source document, when the movement was caused by a sale
    sale_id = db.Column(db.String(36), db.ForeignKey("sales.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship("Product")

    @property
    def quantity_delta(self) -> int:
        return self.quantity if self.type == self.TYPE_INBOUND else -self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "product_id": self.product_id,
            "user_id": self.user_id,
            "type": self.type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "note": self.note,
            "sale_id": self.sale_id,
            "created_at": to_utc_z(self.created_at),
        }


event.listen(Movement, "before_update", forbid_change("Movement"))
event.listen(Movement, "before_delete", forbid_change("Movement"))
