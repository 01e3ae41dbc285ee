from __future__ import annotations

from ..extensions import db
from ..domain import (
    LEASE_STATUS_ACTIVE,
    PERSISTED_LEASE_STATUSES,
    RETURN_CONDITIONS,
    LeaseSnapshot,
)
from ..time_utils import to_utc_z
from ..validation import format_cents

_STATUS_LIST = ", ".join(f"'{s}'" for s in PERSISTED_LEASE_STATUSES)
_CONDITION_LIST = ", ".join(f"'{c}'" for c in RETURN_CONDITIONS)


class Lease(db.Model):
    """
    Rental of one cylinder to one customer.

    LIFECYCLE:
    1. active: created with no return fields
    2. returned: set once at return time (terminal, never mutated again)

    "overdue" is never stored. Use status_service.resolve_lease_status().

    INVARIANTS (enforced by constraints):
    - actual_return_date and refund_amount_cents are set iff status = returned
    - refund never exceeds the deposit
    - at most one active lease per cylinder (partial unique index)

    MONEY: all amounts are integer cents.
    """
    __tablename__ = "leases"
    __table_args__ = (
        db.CheckConstraint(f"status IN ({_STATUS_LIST})", name="ck_leases_status"),
        db.CheckConstraint(
            f"return_condition IS NULL OR return_condition IN ({_CONDITION_LIST})",
            name="ck_leases_return_condition",
        ),
        db.CheckConstraint("deposit_amount_cents >= 0", name="ck_leases_deposit_non_negative"),
        db.CheckConstraint("lease_amount_cents >= 0", name="ck_leases_amount_non_negative"),
        db.CheckConstraint(
            "refund_amount_cents IS NULL OR "
            "(refund_amount_cents >= 0 AND refund_amount_cents <= deposit_amount_cents)",
            name="ck_leases_refund_within_deposit",
        ),
        db.CheckConstraint(
            "(status = 'returned' AND actual_return_date IS NOT NULL AND refund_amount_cents IS NOT NULL) OR "
            "(status = 'active' AND actual_return_date IS NULL AND refund_amount_cents IS NULL)",
            name="ck_leases_return_fields_match_status",
        ),
        db.Index(
            "uq_leases_one_active_per_cylinder",
            "cylinder_id",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
        db.Index("ix_leases_outlet_status", "outlet_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Customers and staff live in the identity system; ids only
    customer_id = db.Column(db.Integer, nullable=False, index=True)
    staff_id = db.Column(db.Integer, nullable=False)

    cylinder_id = db.Column(db.Integer, db.ForeignKey("cylinders.id"), nullable=False, index=True)
    outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)

    lease_date = db.Column(db.DateTime(timezone=True), nullable=False)
    expected_return_date = db.Column(db.DateTime(timezone=True), nullable=True)
    actual_return_date = db.Column(db.DateTime(timezone=True), nullable=True)

    lease_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    deposit_amount_cents = db.Column(db.Integer, nullable=False)
    refund_amount_cents = db.Column(db.Integer, nullable=True)

    # active, returned
    status = db.Column(db.String(16), nullable=False, default=LEASE_STATUS_ACTIVE, index=True)

    # Set on return only
    return_condition = db.Column(db.String(32), nullable=True)
    return_staff_id = db.Column(db.Integer, nullable=True)
    damage_notes = db.Column(db.Text, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    cylinder = db.relationship("Cylinder", backref=db.backref("leases", lazy=True))
    outlet = db.relationship("Outlet")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Lease id={self.id} cylinder_id={self.cylinder_id} status={self.status}>"

    def to_snapshot(self) -> LeaseSnapshot:
        return LeaseSnapshot(
            id=self.id,
            cylinder_id=self.cylinder_id,
            status=self.status,
            lease_date=self.lease_date,
            deposit_amount_cents=self.deposit_amount_cents,
            lease_amount_cents=self.lease_amount_cents,
            expected_return_date=self.expected_return_date,
            actual_return_date=self.actual_return_date,
            refund_amount_cents=self.refund_amount_cents,
            customer_id=self.customer_id,
            outlet_id=self.outlet_id,
        )

    def to_dict(self, resolved_status: str | None = None) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "cylinder_id": self.cylinder_id,
            "outlet_id": self.outlet_id,
            "staff_id": self.staff_id,
            "lease_date": to_utc_z(self.lease_date),
            "expected_return_date": to_utc_z(self.expected_return_date),
            "actual_return_date": to_utc_z(self.actual_return_date),
            "lease_amount": format_cents(self.lease_amount_cents),
            "deposit_amount": format_cents(self.deposit_amount_cents),
            "refund_amount": format_cents(self.refund_amount_cents),
            "status": self.status,
            # Derived at read time by the caller (active/overdue/returned)
            "resolved_status": resolved_status,
            "return_condition": self.return_condition,
            "return_staff_id": self.return_staff_id,
            "damage_notes": self.damage_notes,
            "notes": self.notes,
        }
