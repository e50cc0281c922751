from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .base import forbid_change


class AuditEvent(db.Model):
    """
    Append-only audit log for cross-cutting domain events.

    Written in the same DB transaction as the state change it records
    (sale.created, quotation.converted, invoice.stamped, ...). Failed PAC
    calls are recorded too, in their own small transaction, without touching
    the invoice status.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_events_company_occurred", "company_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False, index=True)

    # What happened
    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g. sale.created, invoice.stamp_failed

    # What it refers to (generic pointer)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)

    actor_user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    # Optional structured metadata (JSON text, keep small)
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
            "payload": self.payload,
        }


event.listen(AuditEvent, "before_update", forbid_change("AuditEvent"))
event.listen(AuditEvent, "before_delete", forbid_change("AuditEvent"))
