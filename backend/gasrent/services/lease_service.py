"""
Lease storage operations: opening leases, finding them, closing them.

WHY: status_service and settlement_service compute over snapshots and never
touch the database. This module reads leases for them and persists the
ReturnInstruction a finished return assessment produces.

RETURN FLOW:
1. find_active_lease_for_cylinder(code)   - operator scans the cylinder
2. start_return(lease_id, now)            - clock frozen, refund previewed
3. settlement_service.finalize_return()   - operator confirms / overrides
4. apply_return(instruction)              - lease closed, cylinder available
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Cylinder, Lease
from ..domain import (
    CYLINDER_STATUS_AVAILABLE,
    CYLINDER_STATUS_LEASED,
    LEASE_STATUS_ACTIVE,
    LEASE_STATUS_RETURNED,
    RESOLVED_LEASE_STATUSES,
)
from ..time_utils import to_naive_utc, utcnow
from ..validation import (
    InvalidStateError,
    NotFoundError,
    ValidationError,
    format_cents,
    optional_text,
    parse_money_cents,
)
from .concurrency import lock_for_update, run_with_retry
from .cylinder_service import find_cylinder
from .settlement_service import ReturnAssessment, ReturnInstruction, begin_return_assessment
from .status_service import count_by_status, filter_by_status


# =============================================================================
# LEASE CREATION
# =============================================================================

def create_lease(
    customer_id: int,
    cylinder_id: int,
    staff_id: int,
    deposit_amount,
    lease_amount,
    expected_return_date: datetime | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Lease:
    """
    Lease an available cylinder to a customer (status: active).

    Args:
        deposit_amount: Decimal string, e.g. "2000.00"
        lease_amount: Decimal string
        expected_return_date: None for an open-ended lease
        now: Lease date (defaults to server clock)

    Returns:
        Lease: The created (committed) lease

    Raises:
        ValidationError: Bad amounts or return date before lease date
        NotFoundError: Cylinder does not exist
        InvalidStateError: Cylinder is not available
    """
    deposit_cents = parse_money_cents(deposit_amount, "deposit_amount")
    lease_cents = parse_money_cents(lease_amount, "lease_amount")
    lease_date = to_naive_utc(now) if now is not None else utcnow()
    expected = to_naive_utc(expected_return_date)
    if expected is not None and expected < lease_date:
        raise ValidationError("Expected return date cannot be before the lease date", field="expected_return_date")

    def _op():
        cylinder = lock_for_update(db.session.query(Cylinder).filter_by(id=cylinder_id)).first()
        if not cylinder:
            raise NotFoundError(f"Cylinder {cylinder_id} not found")
        if cylinder.status != CYLINDER_STATUS_AVAILABLE:
            raise InvalidStateError(
                f"Cylinder {cylinder.code} has status {cylinder.status}. Only available cylinders can be leased."
            )

        lease = Lease(
            customer_id=customer_id,
            cylinder_id=cylinder.id,
            outlet_id=cylinder.current_outlet_id,
            staff_id=staff_id,
            lease_date=lease_date,
            expected_return_date=expected,
            deposit_amount_cents=deposit_cents,
            lease_amount_cents=lease_cents,
            status=LEASE_STATUS_ACTIVE,
            notes=optional_text(notes),
        )
        db.session.add(lease)
        cylinder.status = CYLINDER_STATUS_LEASED

        db.session.commit()
        return lease

    try:
        lease = run_with_retry(_op)
    except (InvalidStateError, NotFoundError):
        db.session.rollback()
        raise
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Lease of cylinder %s failed", cylinder_id)
        raise

    current_app.logger.info("Leased cylinder %s to customer %s (lease %s)", cylinder_id, customer_id, lease.id)
    return lease


# =============================================================================
# QUERIES
# =============================================================================

def get_lease(lease_id: int) -> Lease | None:
    """Get lease by ID."""
    return db.session.get(Lease, lease_id)


def find_active_lease_for_cylinder(code_or_qr: str) -> Lease:
    """
    The lease currently holding the cylinder with this code or QR.

    Raises:
        NotFoundError: Unknown cylinder, or no active lease for it
    """
    cylinder = find_cylinder(code_or_qr)
    lease = db.session.query(Lease).filter_by(
        cylinder_id=cylinder.id,
        status=LEASE_STATUS_ACTIVE,
    ).first()
    if not lease:
        raise NotFoundError(f"No active lease found for cylinder {cylinder.code}")
    return lease


def list_leases(
    now: datetime,
    *,
    status: str | None = None,
    outlet_id: int | None = None,
    customer_id: int | None = None,
) -> list[Lease]:
    """
    Leases filtered by resolved status (active, overdue or returned).

    Overdue is not stored, so active and overdue both read the stored
    "active" rows and split them with the resolver.
    """
    if status is not None and status not in RESOLVED_LEASE_STATUSES:
        raise ValidationError(
            f"Unknown lease status {status!r}. Expected one of: {', '.join(RESOLVED_LEASE_STATUSES)}",
            field="status",
        )

    query = db.session.query(Lease)
    if outlet_id is not None:
        query = query.filter(Lease.outlet_id == outlet_id)
    if customer_id is not None:
        query = query.filter(Lease.customer_id == customer_id)
    if status is not None:
        stored = LEASE_STATUS_RETURNED if status == LEASE_STATUS_RETURNED else LEASE_STATUS_ACTIVE
        query = query.filter(Lease.status == stored)

    leases = query.order_by(Lease.lease_date.desc(), Lease.id.desc()).all()
    if status is None:
        return leases
    return filter_by_status(leases, status, now)


def lease_status_summary(now: datetime, outlet_id: int | None = None) -> dict[str, int]:
    """Counts of active / overdue / returned leases."""
    return count_by_status(list_leases(now, outlet_id=outlet_id), now)


# =============================================================================
# RETURNS
# =============================================================================

def start_return(lease_id: int, now: datetime) -> ReturnAssessment:
    """
    Begin a return assessment using the configured late fee.

    Raises:
        NotFoundError: Lease does not exist
        InvalidStateError: Lease already returned
    """
    lease = get_lease(lease_id)
    if not lease:
        raise NotFoundError(f"Lease {lease_id} not found")
    return begin_return_assessment(
        lease,
        now,
        late_fee_per_day_cents=current_app.config["LATE_FEE_PER_DAY_CENTS"],
    )


def apply_return(instruction: ReturnInstruction) -> Lease:
    """
    Persist a finalized return: close the lease and free the cylinder.

    The lease is re-read under lock; if another operator closed it since
    the assessment began, the instruction is refused.

    Returns:
        Lease: The returned (committed) lease

    Raises:
        NotFoundError: Lease does not exist
        InvalidStateError: Lease is no longer active, or is for another cylinder
        ValidationError: Refund exceeds the stored deposit
    """
    def _op():
        lease = lock_for_update(db.session.query(Lease).filter_by(id=instruction.lease_id)).first()
        if not lease:
            raise NotFoundError(f"Lease {instruction.lease_id} not found")
        if lease.status != LEASE_STATUS_ACTIVE:
            raise InvalidStateError(f"Lease {lease.id} has status {lease.status}. Cannot return it again.")
        if lease.cylinder_id != instruction.cylinder_id:
            raise InvalidStateError(
                f"Lease {lease.id} is for cylinder {lease.cylinder_id}, not cylinder {instruction.cylinder_id}"
            )
        if not 0 <= instruction.refund_cents <= lease.deposit_amount_cents:
            raise ValidationError(
                f"Refund must be between 0.00 and {format_cents(lease.deposit_amount_cents)}",
                field="refund_amount",
            )

        cylinder = lock_for_update(db.session.query(Cylinder).filter_by(id=lease.cylinder_id)).first()

        lease.status = LEASE_STATUS_RETURNED
        lease.actual_return_date = instruction.returned_at
        lease.return_condition = instruction.condition
        lease.refund_amount_cents = instruction.refund_cents
        lease.return_staff_id = instruction.return_staff_id
        lease.damage_notes = instruction.damage_notes
        if instruction.notes:
            lease.notes = f"{lease.notes}\n{instruction.notes}" if lease.notes else instruction.notes

        cylinder.status = CYLINDER_STATUS_AVAILABLE

        db.session.commit()
        return lease

    try:
        lease = run_with_retry(_op)
    except (InvalidStateError, NotFoundError, ValidationError) as exc:
        db.session.rollback()
        current_app.logger.warning("Return of lease %s refused: %s", instruction.lease_id, exc)
        raise
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Return of lease %s failed", instruction.lease_id)
        raise

    current_app.logger.info(
        "Lease %s returned in %s condition, refund %s%s",
        lease.id,
        instruction.condition,
        format_cents(instruction.refund_cents),
        " (overridden)" if instruction.overridden else "",
    )
    return lease
