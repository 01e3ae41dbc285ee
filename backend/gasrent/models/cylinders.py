from __future__ import annotations

from ..extensions import db
from ..domain import CYLINDER_STATUSES, CYLINDER_STATUS_AVAILABLE, CylinderSnapshot
from ..time_utils import to_utc_z

_STATUS_LIST = ", ".join(f"'{s}'" for s in CYLINDER_STATUSES)


class Cylinder(db.Model):
    """
    A physical gas cylinder.

    IDENTIFIERS:
    - code: human-readable code printed on the cylinder (e.g. "CYL-000123")
    - qr_code: payload of the QR sticker; scans resolve by either value

    CUSTODY: current_outlet_id is the single outlet holding the cylinder.
    It changes only through a committed transfer.

    CONCURRENCY: version_id_col gives optimistic locking, so two transfer
    or lease workflows racing on the same cylinder cannot both win.
    """
    __tablename__ = "cylinders"
    __table_args__ = (
        db.CheckConstraint(f"status IN ({_STATUS_LIST})", name="ck_cylinders_status"),
        db.CheckConstraint("current_gas_volume <= max_gas_volume", name="ck_cylinders_volume_within_max"),
        db.CheckConstraint("current_gas_volume >= 0", name="ck_cylinders_volume_non_negative"),
        db.Index("ix_cylinders_outlet_status", "current_outlet_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    code = db.Column(db.String(64), nullable=False, unique=True)
    qr_code = db.Column(db.String(255), nullable=False, unique=True)

    # e.g. "5kg", "12.5kg", "50kg"
    capacity_class = db.Column(db.String(32), nullable=False)

    # available, leased, refilling, maintenance, damaged, retired
    status = db.Column(db.String(16), nullable=False, default=CYLINDER_STATUS_AVAILABLE, index=True)

    current_outlet_id = db.Column(db.Integer, db.ForeignKey("outlets.id"), nullable=False, index=True)

    current_gas_volume = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    max_gas_volume = db.Column(db.Numeric(10, 2), nullable=False)

    last_inspection_date = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    current_outlet = db.relationship("Outlet", backref=db.backref("cylinders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Cylinder id={self.id} code={self.code!r} status={self.status} outlet_id={self.current_outlet_id}>"

    def to_snapshot(self) -> CylinderSnapshot:
        return CylinderSnapshot(
            id=self.id,
            code=self.code,
            status=self.status,
            current_outlet_id=self.current_outlet_id,
            qr_code=self.qr_code,
            capacity_class=self.capacity_class,
            current_gas_volume=self.current_gas_volume,
            max_gas_volume=self.max_gas_volume,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "qr_code": self.qr_code,
            "capacity_class": self.capacity_class,
            "status": self.status,
            "current_outlet_id": self.current_outlet_id,
            "current_gas_volume": str(self.current_gas_volume) if self.current_gas_volume is not None else None,
            "max_gas_volume": str(self.max_gas_volume) if self.max_gas_volume is not None else None,
            "last_inspection_date": to_utc_z(self.last_inspection_date),
            "version_id": self.version_id,
        }
