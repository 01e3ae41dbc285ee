from __future__ import annotations

from ..extensions import db
from ..domain import TRANSFER_REASONS, TRANSFER_REASON_LABELS, TRANSFER_REASON_OTHER
from ..time_utils import to_utc_z

_REASON_LIST = ", ".join(f"'{r}'" for r in TRANSFER_REASONS)


class Transfer(db.Model):
    """
    Record of one cylinder moving from one outlet to another.

    Created once when the move is applied and never modified afterwards.
    A bulk transfer produces one row per cylinder.
    """
    __tablename__ = "transfers"
    __table_args__ = (
        db.CheckConstraint("source_outlet_id <> destination_outlet_id", name="ck_transfers_distinct_outlets"),
        db.CheckConstraint(f"reason IN ({_REASON_LIST})", name="ck_transfers_reason"),
        db.CheckConstraint(
            "reason <> 'other' OR (custom_reason IS NOT NULL AND custom_reason <> '')",
            name="ck_transfers_custom_reason",
        ),
        db.Index("ix_transfers_cylinder_created", "cylinder_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    cylinder_id = db.Column(db.Integer, db.ForeignKey("cylinders.id"), nullable=False, index=True)
    source_outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)
    destination_outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)

    # balancing, request, maintenance, emergency, closure, other
    reason = db.Column(db.String(16), nullable=False)
    custom_reason = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    requested_by = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cylinder = db.relationship("Cylinder", backref=db.backref("transfers", lazy=True))
    source_outlet = db.relationship("Outlet", foreign_keys=[source_outlet_id])
    destination_outlet = db.relationship("Outlet", foreign_keys=[destination_outlet_id])

    @property
    def reason_text(self) -> str:
        if self.reason == TRANSFER_REASON_OTHER and self.custom_reason:
            return self.custom_reason
        return TRANSFER_REASON_LABELS.get(self.reason, self.reason)

    def __repr__(self) -> str:
        return (
            f"<Transfer id={self.id} cylinder_id={self.cylinder_id} "
            f"{self.source_outlet_id}->{self.destination_outlet_id}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cylinder_id": self.cylinder_id,
            "source_outlet_id": self.source_outlet_id,
            "destination_outlet_id": self.destination_outlet_id,
            "reason": self.reason,
            "custom_reason": self.custom_reason,
            "reason_text": self.reason_text,
            "notes": self.notes,
            "requested_by": self.requested_by,
            "created_at": to_utc_z(self.created_at),
        }
