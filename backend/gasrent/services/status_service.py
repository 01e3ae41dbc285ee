"""
Lease status resolution.

WHY: Only "active" and "returned" are ever stored. "overdue" depends on the
clock, so it is derived on every read instead of being flipped by a
background job. Every consumer that shows or filters leases by status must
go through resolve_lease_status(); reading the stored status directly
under-reports overdue leases.

RULES (evaluated in order):
1. Stored status "returned" -> returned (terminal, dates are ignored)
2. No expected return date -> active (open-ended lease, never overdue)
3. now > expected return date -> overdue
4. Otherwise -> active

Works on anything exposing `status` and `expected_return_date`
(LeaseSnapshot or the Lease model).
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from ..domain import (
    LEASE_STATUS_ACTIVE,
    LEASE_STATUS_OVERDUE,
    LEASE_STATUS_RETURNED,
    RESOLVED_LEASE_STATUSES,
)
from ..time_utils import started_days, to_naive_utc
from ..validation import ValidationError


def resolve_lease_status(lease, now: datetime) -> str:
    """Return the effective status of a lease at `now`."""
    if lease.status == LEASE_STATUS_RETURNED:
        return LEASE_STATUS_RETURNED

    expected = to_naive_utc(lease.expected_return_date)
    if expected is None:
        return LEASE_STATUS_ACTIVE

    if to_naive_utc(now) > expected:
        return LEASE_STATUS_OVERDUE

    return LEASE_STATUS_ACTIVE


def is_overdue(lease, now: datetime) -> bool:
    return resolve_lease_status(lease, now) == LEASE_STATUS_OVERDUE


def days_overdue(lease, now: datetime) -> int:
    """Started days past the expected return date; 0 unless overdue."""
    if not is_overdue(lease, now):
        return 0
    return started_days(to_naive_utc(now) - to_naive_utc(lease.expected_return_date))


def filter_by_status(leases: Iterable, status: str, now: datetime) -> list:
    """Keep the leases whose resolved status equals `status`."""
    if status not in RESOLVED_LEASE_STATUSES:
        raise ValidationError(
            f"Unknown lease status {status!r}. Expected one of: {', '.join(RESOLVED_LEASE_STATUSES)}",
            field="status",
        )
    return [lease for lease in leases if resolve_lease_status(lease, now) == status]


def count_by_status(leases: Iterable, now: datetime) -> dict[str, int]:
    """Dashboard counters: number of leases per resolved status."""
    counts = {status: 0 for status in RESOLVED_LEASE_STATUSES}
    for lease in leases:
        counts[resolve_lease_status(lease, now)] += 1
    return counts
