"""
Lease storage tests (in-memory SQLite).

Verifies:
- Leasing requires an available cylinder and marks it leased
- Listing by resolved status splits stored "active" rows into active/overdue
- Scan lookup of the active lease
- Full return flow: assessment -> finalize -> apply
- A lease cannot be returned twice
- Database constraints back the lease invariants
"""

import dataclasses
from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from gasrent.extensions import db
from gasrent.models import Cylinder, Lease
from gasrent.services import lease_service
from gasrent.services.settlement_service import finalize_return
from gasrent.validation import InvalidStateError, NotFoundError, ValidationError


# =============================================================================
# CREATION
# =============================================================================


class TestCreateLease:

    def test_create_lease_marks_cylinder_leased(self, db_session, outlet_a, make_cylinder):
        cylinder = make_cylinder(outlet_a)
        lease = lease_service.create_lease(
            customer_id=11,
            cylinder_id=cylinder.id,
            staff_id=2,
            deposit_amount="2000.00",
            lease_amount="500",
            expected_return_date=datetime(2024, 1, 10),
            now=datetime(2024, 1, 1),
        )

        assert lease.status == "active"
        assert lease.deposit_amount_cents == 200_000
        assert lease.lease_amount_cents == 50_000
        assert lease.outlet_id == outlet_a.id
        assert db_session.get(Cylinder, cylinder.id).status == "leased"

    def test_cannot_lease_unavailable_cylinder(self, db_session, outlet_a, make_cylinder):
        cylinder = make_cylinder(outlet_a, status="refilling")
        with pytest.raises(InvalidStateError):
            lease_service.create_lease(11, cylinder.id, 2, "2000", "500")
        assert db_session.query(Lease).count() == 0

    def test_unknown_cylinder(self, db_session):
        with pytest.raises(NotFoundError):
            lease_service.create_lease(11, 9999, 2, "2000", "500")

    def test_database_error_leaves_session_usable(self, db_session, outlet_a, make_cylinder, make_lease):
        cylinder = make_cylinder(outlet_a)
        make_lease(cylinder)
        # Stock record out of step with the open lease
        cylinder.status = "available"
        db_session.commit()

        with pytest.raises(IntegrityError):
            lease_service.create_lease(12, cylinder.id, 2, "2000", "500")
        assert db_session.query(Lease).count() == 1

    def test_float_amounts_rejected(self, db_session, outlet_a, make_cylinder):
        cylinder = make_cylinder(outlet_a)
        with pytest.raises(ValidationError):
            lease_service.create_lease(11, cylinder.id, 2, 2000.0, "500")

    def test_return_date_before_lease_date(self, db_session, outlet_a, make_cylinder):
        cylinder = make_cylinder(outlet_a)
        with pytest.raises(ValidationError):
            lease_service.create_lease(
                11, cylinder.id, 2, "2000", "500",
                expected_return_date=datetime(2023, 12, 1),
                now=datetime(2024, 1, 1),
            )


# =============================================================================
# QUERIES
# =============================================================================


class TestListLeases:

    @pytest.fixture
    def leases(self, db_session, outlet_a, outlet_b, make_cylinder, make_lease):
        overdue = make_lease(make_cylinder(outlet_a), expected_return_date=datetime(2024, 1, 10))
        active = make_lease(make_cylinder(outlet_a), expected_return_date=datetime(2024, 3, 1))
        open_ended = make_lease(make_cylinder(outlet_b), expected_return_date=None)
        return {"overdue": overdue.id, "active": active.id, "open_ended": open_ended.id}

    def test_overdue(self, leases):
        result = lease_service.list_leases(datetime(2024, 1, 15), status="overdue")
        assert [l.id for l in result] == [leases["overdue"]]

    def test_active(self, leases):
        result = lease_service.list_leases(datetime(2024, 1, 15), status="active")
        assert sorted(l.id for l in result) == sorted([leases["active"], leases["open_ended"]])

    def test_outlet_filter(self, leases, outlet_b):
        result = lease_service.list_leases(datetime(2024, 1, 15), outlet_id=outlet_b.id)
        assert [l.id for l in result] == [leases["open_ended"]]

    def test_unknown_status(self, leases):
        with pytest.raises(ValidationError):
            lease_service.list_leases(datetime(2024, 1, 15), status="late")

    def test_summary(self, leases):
        summary = lease_service.lease_status_summary(datetime(2024, 1, 15))
        assert summary == {"active": 2, "overdue": 1, "returned": 0}

    def test_overdue_is_never_persisted(self, leases, db_session):
        lease_service.list_leases(datetime(2024, 6, 1), status="overdue")
        stored = {row.status for row in db_session.query(Lease).all()}
        assert stored == {"active"}


class TestFindActiveLease:

    def test_find_by_code_and_qr(self, db_session, outlet_a, make_cylinder, make_lease):
        cylinder = make_cylinder(outlet_a, code="CYL-777")
        lease = make_lease(cylinder)
        assert lease_service.find_active_lease_for_cylinder("CYL-777").id == lease.id
        assert lease_service.find_active_lease_for_cylinder("QR-CYL-777").id == lease.id

    def test_no_active_lease(self, db_session, outlet_a, make_cylinder):
        make_cylinder(outlet_a, code="CYL-778")
        with pytest.raises(NotFoundError, match="No active lease"):
            lease_service.find_active_lease_for_cylinder("CYL-778")

    def test_unknown_code(self, db_session):
        with pytest.raises(NotFoundError):
            lease_service.find_active_lease_for_cylinder("NOPE")


# =============================================================================
# RETURNS
# =============================================================================


class TestReturnFlow:

    def test_return_three_days_late(self, db_session, outlet_a, make_cylinder, make_lease):
        cylinder = make_cylinder(outlet_a)
        lease = make_lease(cylinder, expected_return_date=datetime(2024, 1, 10))

        assessment = lease_service.start_return(lease.id, datetime(2024, 1, 13))
        instruction = finalize_return(assessment, "good", return_staff_id=4)
        returned = lease_service.apply_return(instruction)

        assert returned.status == "returned"
        assert returned.refund_amount_cents == 185_000
        assert returned.actual_return_date == datetime(2024, 1, 13)
        assert returned.return_condition == "good"
        assert returned.return_staff_id == 4
        assert db_session.get(Cylinder, cylinder.id).status == "available"

    def test_override_is_persisted(self, db_session, outlet_a, make_cylinder, make_lease):
        lease = make_lease(make_cylinder(outlet_a))
        assessment = lease_service.start_return(lease.id, datetime(2024, 1, 5))
        instruction = finalize_return(
            assessment, "damaged", damage_notes="Cracked collar", refund_override_cents=120_000
        )
        returned = lease_service.apply_return(instruction)
        assert returned.refund_amount_cents == 120_000
        assert returned.damage_notes == "Cracked collar"

    def test_cannot_return_twice(self, db_session, outlet_a, make_cylinder, make_lease):
        lease = make_lease(make_cylinder(outlet_a))
        assessment = lease_service.start_return(lease.id, datetime(2024, 1, 5))
        instruction = finalize_return(assessment, "good")
        lease_service.apply_return(instruction)

        # A second operator who began before the first committed
        with pytest.raises(InvalidStateError):
            lease_service.apply_return(instruction)
        # And a fresh attempt is refused at assessment time
        with pytest.raises(InvalidStateError):
            lease_service.start_return(lease.id, datetime(2024, 1, 6))

    def test_instruction_for_another_cylinder_is_refused(self, db_session, outlet_a, make_cylinder, make_lease):
        first = make_cylinder(outlet_a)
        other = make_cylinder(outlet_a)
        lease = make_lease(first)
        make_lease(other)
        instruction = finalize_return(lease_service.start_return(lease.id, datetime(2024, 1, 5)), "good")
        misrouted = dataclasses.replace(instruction, cylinder_id=other.id)

        with pytest.raises(InvalidStateError, match="not cylinder"):
            lease_service.apply_return(misrouted)
        assert db_session.get(Lease, lease.id).status == "active"
        assert db_session.get(Cylinder, other.id).status == "leased"

    def test_start_return_unknown_lease(self, db_session):
        with pytest.raises(NotFoundError):
            lease_service.start_return(4242, datetime(2024, 1, 5))

    def test_configured_late_fee_is_used(self, app, db_session, outlet_a, make_cylinder, make_lease):
        lease = make_lease(make_cylinder(outlet_a), expected_return_date=datetime(2024, 1, 10))
        app.config["LATE_FEE_PER_DAY_CENTS"] = 1_000
        try:
            assessment = lease_service.start_return(lease.id, datetime(2024, 1, 13))
        finally:
            app.config["LATE_FEE_PER_DAY_CENTS"] = 5_000
        assert assessment.suggested_refund("good") == 197_000

    def test_returned_lease_frees_cylinder_for_new_lease(self, db_session, outlet_a, make_cylinder, make_lease):
        cylinder = make_cylinder(outlet_a)
        lease = make_lease(cylinder)
        assessment = lease_service.start_return(lease.id, datetime(2024, 1, 5))
        lease_service.apply_return(finalize_return(assessment, "good"))

        again = lease_service.create_lease(12, cylinder.id, 2, "2000", "500", now=datetime(2024, 1, 6))
        assert again.status == "active"


# =============================================================================
# CONSTRAINTS
# =============================================================================


class TestLeaseConstraints:

    def test_one_active_lease_per_cylinder(self, db_session, outlet_a, make_cylinder, make_lease):
        cylinder = make_cylinder(outlet_a)
        make_lease(cylinder)
        with pytest.raises(IntegrityError):
            make_lease(cylinder)
        db.session.rollback()

    def test_refund_cannot_exceed_deposit(self, db_session, outlet_a, make_cylinder, make_lease):
        lease = make_lease(make_cylinder(outlet_a))
        lease.status = "returned"
        lease.actual_return_date = datetime(2024, 1, 5)
        lease.refund_amount_cents = lease.deposit_amount_cents + 1
        with pytest.raises(IntegrityError):
            db_session.commit()
        db.session.rollback()

    def test_returned_requires_return_fields(self, db_session, outlet_a, make_cylinder, make_lease):
        lease = make_lease(make_cylinder(outlet_a))
        lease.status = "returned"
        with pytest.raises(IntegrityError):
            db_session.commit()
        db.session.rollback()

    def test_overdue_cannot_be_stored(self, db_session, outlet_a, make_cylinder, make_lease):
        lease = make_lease(make_cylinder(outlet_a))
        lease.status = "overdue"
        with pytest.raises(IntegrityError):
            db_session.commit()
        db.session.rollback()
