"""
Return settlement: refund of the deposit when a leased cylinder comes back.

WHY: The refund depends on the condition of the returned cylinder and on
how late it came back. Operators see the computed value as a default and
may override it within [0, deposit].

REFUND RULES:
1. Condition factor: good 100%, needs_inspection 75%, damaged 50%
2. Base refund = deposit x factor
3. If returned after the expected date:
   days_late = started days past the deadline
   late_fee = min(days_late x LATE_FEE_PER_DAY, 50% of base refund)
   refund = max(0, base - late_fee)
4. Refund is always inside [0, deposit]

CLOCK:
The assessment clock is frozen when the assessment begins
(begin_return_assessment). A long-idle assessment keeps computing late fees
against that instant; callers that want the current clock must ask for it
explicitly with ReturnAssessment.refreshed(now).

All amounts are integer cents; factors are basis points (10000 = 100%).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from ..domain import (
    CONDITION_DAMAGED,
    CONDITION_GOOD,
    CONDITION_NEEDS_INSPECTION,
    LEASE_STATUS_ACTIVE,
    LEASE_STATUS_OVERDUE,
    RETURN_CONDITIONS,
)
from ..time_utils import started_days, to_naive_utc, to_utc_z
from ..validation import InvalidStateError, ValidationError, format_cents, optional_text
from .status_service import resolve_lease_status


# =============================================================================
# SETTLEMENT CONSTANTS
# =============================================================================

BPS_DENOMINATOR = 10_000

CONDITION_FACTOR_BPS = {
    CONDITION_GOOD: 10_000,
    CONDITION_DAMAGED: 5_000,
    CONDITION_NEEDS_INSPECTION: 7_500,
}

# 50 currency units per started day
LATE_FEE_PER_DAY_CENTS = 5_000

# Late fee never exceeds half of the condition-adjusted refund
LATE_FEE_CAP_BPS = 5_000


def _apply_bps(amount_cents: int, bps: int) -> int:
    """amount x bps / 10000, rounded half-up to the cent."""
    return (amount_cents * bps + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR


def _condition_factor_bps(condition: str) -> int:
    try:
        return CONDITION_FACTOR_BPS[condition]
    except KeyError:
        raise ValidationError(
            f"Unknown return condition {condition!r}. Expected one of: {', '.join(RETURN_CONDITIONS)}",
            field="condition",
        )


# =============================================================================
# REFUND COMPUTATION
# =============================================================================

@dataclass(frozen=True)
class RefundBreakdown:
    """Every intermediate value of a refund computation, for display and audit."""
    deposit_cents: int
    condition: str
    condition_factor_bps: int
    base_refund_cents: int
    days_late: int
    late_fee_uncapped_cents: int
    late_fee_cents: int
    refund_cents: int

    @property
    def late_fee_capped(self) -> bool:
        return self.late_fee_cents < self.late_fee_uncapped_cents

    def to_dict(self) -> dict:
        return {
            "deposit": format_cents(self.deposit_cents),
            "condition": self.condition,
            "condition_factor_bps": self.condition_factor_bps,
            "base_refund": format_cents(self.base_refund_cents),
            "days_late": self.days_late,
            "late_fee_uncapped": format_cents(self.late_fee_uncapped_cents),
            "late_fee": format_cents(self.late_fee_cents),
            "late_fee_capped": self.late_fee_capped,
            "refund": format_cents(self.refund_cents),
        }


def _ensure_settleable(lease, now: datetime) -> str:
    status = resolve_lease_status(lease, now)
    if status not in (LEASE_STATUS_ACTIVE, LEASE_STATUS_OVERDUE):
        raise InvalidStateError(
            f"Lease {lease.id} has status {status}. Only active or overdue leases can be returned."
        )
    return status


def _breakdown(
    deposit_cents: int,
    expected_return_date,
    condition: str,
    now: datetime,
    late_fee_per_day_cents: int,
) -> RefundBreakdown:
    factor_bps = _condition_factor_bps(condition)
    base_refund = _apply_bps(deposit_cents, factor_bps)

    days_late = 0
    expected = to_naive_utc(expected_return_date)
    if expected is not None:
        days_late = started_days(to_naive_utc(now) - expected)

    late_fee_uncapped = days_late * late_fee_per_day_cents
    # Floor division keeps the cap at or below exactly half
    late_fee_cap = base_refund * LATE_FEE_CAP_BPS // BPS_DENOMINATOR
    late_fee = min(late_fee_uncapped, late_fee_cap)

    refund = max(0, base_refund - late_fee)
    refund = min(refund, deposit_cents)

    return RefundBreakdown(
        deposit_cents=deposit_cents,
        condition=condition,
        condition_factor_bps=factor_bps,
        base_refund_cents=base_refund,
        days_late=days_late,
        late_fee_uncapped_cents=late_fee_uncapped,
        late_fee_cents=late_fee,
        refund_cents=refund,
    )


def compute_refund_breakdown(
    lease,
    condition: str,
    now: datetime,
    *,
    late_fee_per_day_cents: int = LATE_FEE_PER_DAY_CENTS,
) -> RefundBreakdown:
    """
    Compute the refund for returning `lease` at `now` in `condition`.

    Raises:
        InvalidStateError: Lease is already returned
        ValidationError: Unknown condition
    """
    _ensure_settleable(lease, now)
    return _breakdown(
        lease.deposit_amount_cents,
        lease.expected_return_date,
        condition,
        now,
        late_fee_per_day_cents,
    )


def compute_refund(
    lease,
    condition: str,
    now: datetime,
    *,
    late_fee_per_day_cents: int = LATE_FEE_PER_DAY_CENTS,
) -> int:
    """Default refund in cents, clamped to [0, deposit]."""
    return compute_refund_breakdown(
        lease, condition, now, late_fee_per_day_cents=late_fee_per_day_cents
    ).refund_cents


# =============================================================================
# RETURN ASSESSMENT
# =============================================================================

@dataclass(frozen=True)
class ReturnAssessment:
    """
    An in-progress return, with the clock frozen at the moment it began.

    Holds only the lease fields the settlement needs so the assessment can
    outlive the database session it was read from.
    """
    lease_id: int
    cylinder_id: int
    deposit_cents: int
    expected_return_date: datetime | None
    assessed_at: datetime
    status_at_assessment: str
    late_fee_per_day_cents: int = LATE_FEE_PER_DAY_CENTS

    def breakdown(self, condition: str) -> RefundBreakdown:
        return _breakdown(
            self.deposit_cents,
            self.expected_return_date,
            condition,
            self.assessed_at,
            self.late_fee_per_day_cents,
        )

    def suggested_refund(self, condition: str) -> int:
        return self.breakdown(condition).refund_cents

    def refreshed(self, now: datetime) -> "ReturnAssessment":
        """Same assessment re-evaluated against a new clock."""
        now = to_naive_utc(now)
        expected = to_naive_utc(self.expected_return_date)
        status = LEASE_STATUS_OVERDUE if expected is not None and now > expected else LEASE_STATUS_ACTIVE
        return replace(self, assessed_at=now, status_at_assessment=status)


def begin_return_assessment(
    lease,
    now: datetime,
    *,
    late_fee_per_day_cents: int = LATE_FEE_PER_DAY_CENTS,
) -> ReturnAssessment:
    """
    Start assessing the return of `lease`.

    Raises:
        InvalidStateError: Lease is already returned
    """
    status = _ensure_settleable(lease, now)
    return ReturnAssessment(
        lease_id=lease.id,
        cylinder_id=lease.cylinder_id,
        deposit_cents=lease.deposit_amount_cents,
        expected_return_date=to_naive_utc(lease.expected_return_date),
        assessed_at=to_naive_utc(now),
        status_at_assessment=status,
        late_fee_per_day_cents=late_fee_per_day_cents,
    )


@dataclass(frozen=True)
class ReturnInstruction:
    """What the caller must persist to close the lease."""
    lease_id: int
    cylinder_id: int
    condition: str
    refund_cents: int
    computed_refund_cents: int
    returned_at: datetime
    damage_notes: str | None = None
    notes: str | None = None
    return_staff_id: int | None = None

    @property
    def overridden(self) -> bool:
        return self.refund_cents != self.computed_refund_cents

    def to_dict(self) -> dict:
        return {
            "lease_id": self.lease_id,
            "cylinder_id": self.cylinder_id,
            "condition": self.condition,
            "refund_amount": format_cents(self.refund_cents),
            "computed_refund_amount": format_cents(self.computed_refund_cents),
            "overridden": self.overridden,
            "returned_at": to_utc_z(self.returned_at),
            "damage_notes": self.damage_notes,
            "notes": self.notes,
            "return_staff_id": self.return_staff_id,
        }


def finalize_return(
    assessment: ReturnAssessment,
    condition: str,
    *,
    damage_notes: str | None = None,
    notes: str | None = None,
    refund_override_cents: int | None = None,
    return_staff_id: int | None = None,
) -> ReturnInstruction:
    """
    Validate the operator's return submission and build the commit instruction.

    Args:
        assessment: Assessment started by begin_return_assessment()
        condition: good, damaged or needs_inspection
        damage_notes: Required when condition is not good
        notes: Free-form return notes
        refund_override_cents: Operator-entered refund replacing the computed default
        return_staff_id: Staff member receiving the cylinder

    Returns:
        ReturnInstruction for the caller to persist

    Raises:
        ValidationError: Unknown condition, missing damage notes, override out of bounds
    """
    breakdown = assessment.breakdown(condition)

    damage_notes = optional_text(damage_notes)
    if condition != CONDITION_GOOD and damage_notes is None:
        raise ValidationError(
            f"Damage notes are required when condition is {condition}",
            field="damage_notes",
        )

    refund_cents = breakdown.refund_cents
    if refund_override_cents is not None:
        if isinstance(refund_override_cents, bool) or not isinstance(refund_override_cents, int):
            raise ValidationError("Refund override must be an amount in cents", field="refund_amount")
        if refund_override_cents < 0 or refund_override_cents > assessment.deposit_cents:
            raise ValidationError(
                f"Refund must be between 0.00 and {format_cents(assessment.deposit_cents)}",
                field="refund_amount",
            )
        refund_cents = refund_override_cents

    return ReturnInstruction(
        lease_id=assessment.lease_id,
        cylinder_id=assessment.cylinder_id,
        condition=condition,
        refund_cents=refund_cents,
        computed_refund_cents=breakdown.refund_cents,
        returned_at=assessment.assessed_at,
        damage_notes=damage_notes,
        notes=optional_text(notes),
        return_staff_id=return_staff_id,
    )
