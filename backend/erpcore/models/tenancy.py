from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z
from .base import new_id


class Company(db.Model):
    """
    Tenant root and issuer fiscal profile.

    MULTI-TENANT: Every sale, quotation, invoice, product and customer belongs
    to exactly one company. All queries in the core filter by company_id.

    The fiscal columns are maintained by the company settings collaborator;
    this core only reads them.
    """
    __tablename__ = "companies"

    id = db.Column(db.String(36), primary_key=True, default=new_id)

    # Legal name as registered with the tax authority
    name = db.Column(db.String(255), nullable=False)
    rfc = db.Column(db.String(13), nullable=True, index=True)
    tax_regime = db.Column(db.String(3), nullable=True)

    # Fiscal address (postal_code doubles as the CFDI expedition place)
    street = db.Column(db.String(255), nullable=True)
    exterior_number = db.Column(db.String(32), nullable=True)
    neighborhood = db.Column(db.String(128), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    state = db.Column(db.String(128), nullable=True)
    postal_code = db.Column(db.String(5), nullable=True)

    # PAC account (falls back to app config when unset)
    pac_username = db.Column(db.String(128), nullable=True)
    pac_password = db.Column(db.String(255), nullable=True)

    # CSD material used to sign outgoing CFDIs
    csd_certificate = db.Column(db.Text, nullable=True)
    csd_private_key = db.Column(db.Text, nullable=True)
    csd_password = db.Column(db.String(255), nullable=True)
    csd_valid_until = db.Column(db.DateTime, nullable=True)

    # Sandbox companies stamp against the PAC test environment
    test_mode = db.Column(db.Boolean, nullable=False, default=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def has_csd(self) -> bool:
        return bool(self.csd_certificate and self.csd_private_key and self.csd_password)

    def __repr__(self) -> str:
        return f"<Company id={self.id} rfc={self.rfc!r}>"

    def to_dict(self) -> dict:
        # Never serializes PAC credentials or CSD material
        return {
            "id": self.id,
            "name": self.name,
            "rfc": self.rfc,
            "tax_regime": self.tax_regime,
            "street": self.street,
            "exterior_number": self.exterior_number,
            "neighborhood": self.neighborhood,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "has_csd": self.has_csd,
            "csd_valid_until": to_utc_z(self.csd_valid_until),
            "test_mode": self.test_mode,
            "is_active": self.is_active,
        }


class User(db.Model):
    """Company member. Issued and authenticated by the auth collaborator."""
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("company_id", "email", name="uq_users_company_email"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    company = db.relationship("Company", backref=db.backref("users", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "email": self.email,
            "is_active": self.is_active,
        }
