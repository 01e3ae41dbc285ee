# Overview: Shared value types for the rental core: status vocabularies and record snapshots.

"""
Snapshots are the read-only views of stored records that the core
computes over. The core never holds a database session; callers build
snapshots from their storage (see Model.to_snapshot()) or by hand.

All money is integer cents. All datetimes are UTC-naive.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


# =============================================================================
# LEASE STATUS
# =============================================================================

# Persisted values
LEASE_STATUS_ACTIVE = "active"
LEASE_STATUS_RETURNED = "returned"

# Derived only, never written to storage
LEASE_STATUS_OVERDUE = "overdue"

PERSISTED_LEASE_STATUSES = (LEASE_STATUS_ACTIVE, LEASE_STATUS_RETURNED)
RESOLVED_LEASE_STATUSES = (LEASE_STATUS_ACTIVE, LEASE_STATUS_OVERDUE, LEASE_STATUS_RETURNED)


# =============================================================================
# RETURN CONDITION
# =============================================================================

CONDITION_GOOD = "good"
CONDITION_DAMAGED = "damaged"
CONDITION_NEEDS_INSPECTION = "needs_inspection"

RETURN_CONDITIONS = (CONDITION_GOOD, CONDITION_DAMAGED, CONDITION_NEEDS_INSPECTION)


# =============================================================================
# CYLINDER STATUS
# =============================================================================

CYLINDER_STATUS_AVAILABLE = "available"
CYLINDER_STATUS_LEASED = "leased"
CYLINDER_STATUS_REFILLING = "refilling"
CYLINDER_STATUS_MAINTENANCE = "maintenance"
CYLINDER_STATUS_DAMAGED = "damaged"
CYLINDER_STATUS_RETIRED = "retired"

CYLINDER_STATUSES = (
    CYLINDER_STATUS_AVAILABLE,
    CYLINDER_STATUS_LEASED,
    CYLINDER_STATUS_REFILLING,
    CYLINDER_STATUS_MAINTENANCE,
    CYLINDER_STATUS_DAMAGED,
    CYLINDER_STATUS_RETIRED,
)


# =============================================================================
# TRANSFER
# =============================================================================

TRANSFER_TYPE_SINGLE = "single"
TRANSFER_TYPE_BULK = "bulk"

TRANSFER_TYPES = (TRANSFER_TYPE_SINGLE, TRANSFER_TYPE_BULK)

TRANSFER_REASON_BALANCING = "balancing"
TRANSFER_REASON_REQUEST = "request"
TRANSFER_REASON_MAINTENANCE = "maintenance"
TRANSFER_REASON_EMERGENCY = "emergency"
TRANSFER_REASON_CLOSURE = "closure"
TRANSFER_REASON_OTHER = "other"

TRANSFER_REASONS = (
    TRANSFER_REASON_BALANCING,
    TRANSFER_REASON_REQUEST,
    TRANSFER_REASON_MAINTENANCE,
    TRANSFER_REASON_EMERGENCY,
    TRANSFER_REASON_CLOSURE,
    TRANSFER_REASON_OTHER,
)

TRANSFER_REASON_LABELS = {
    TRANSFER_REASON_BALANCING: "Stock Balancing",
    TRANSFER_REASON_REQUEST: "Customer Request",
    TRANSFER_REASON_MAINTENANCE: "Maintenance Required",
    TRANSFER_REASON_EMERGENCY: "Emergency Supply",
    TRANSFER_REASON_CLOSURE: "Outlet Closure",
    TRANSFER_REASON_OTHER: "Other Reason",
}


# =============================================================================
# SNAPSHOTS
# =============================================================================

@dataclass(frozen=True)
class LeaseSnapshot:
    id: int
    cylinder_id: int
    status: str
    lease_date: datetime
    deposit_amount_cents: int
    lease_amount_cents: int = 0
    expected_return_date: datetime | None = None
    actual_return_date: datetime | None = None
    refund_amount_cents: int | None = None
    customer_id: int | None = None
    outlet_id: int | None = None


@dataclass(frozen=True)
class CylinderSnapshot:
    id: int
    code: str
    status: str
    current_outlet_id: int
    qr_code: str | None = None
    capacity_class: str | None = None
    current_gas_volume: Decimal | None = None
    max_gas_volume: Decimal | None = None
