from __future__ import annotations

import json

from ..extensions import db
from marketpos.time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Append-only record of user actions.

    IMMUTABLE: Records are never updated or deleted.
    Written after the audited change has committed, in its own transaction.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_created_at", "created_at"),
        db.Index("ix_audit_logs_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # e.g. CREATE_SALE, UPDATE_PRODUCT, LOGIN
    action = db.Column(db.String(64), nullable=False, index=True)
    table_name = db.Column(db.String(64), nullable=True)
    record_id = db.Column(db.Integer, nullable=True)

    # JSON snapshots (optional)
    old_values = db.Column(db.Text, nullable=True)
    new_values = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_name": self.user.name if self.user else None,
            "user_email": self.user.email if self.user else None,
            "action": self.action,
            "table_name": self.table_name,
            "record_id": self.record_id,
            "old_values": json.loads(self.old_values) if self.old_values else None,
            "new_values": json.loads(self.new_values) if self.new_values else None,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": to_utc_z(self.created_at),
        }
