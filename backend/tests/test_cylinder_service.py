"""
Cylinder lookup and transfer application tests (in-memory SQLite).

Verifies:
- Scan lookup by code or QR
- Bulk candidates are the outlet's available cylinders
- apply_transfer re-checks status and outlet at apply time
- Wizard + database executor: bulk partial failure leaves earlier moves in place
- Transfer rows can never point back to their source outlet
"""

from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError

from gasrent.extensions import db
from gasrent.models import Cylinder, Transfer
from gasrent.services import cylinder_service
from gasrent.services.transfer_wizard import TransferCommand, TransferWizard
from gasrent.validation import InvalidStateError, NotFoundError, ValidationError


def _command(cylinder, destination, reason="balancing", **kwargs):
    return TransferCommand(
        cylinder_id=cylinder.id,
        source_outlet_id=cylinder.current_outlet_id,
        destination_outlet_id=destination.id,
        reason=reason,
        **kwargs,
    )


# =============================================================================
# LOOKUPS
# =============================================================================


class TestLookups:

    def test_find_by_code_or_qr(self, db_session, outlet_a, make_cylinder):
        cylinder = make_cylinder(outlet_a, code="CYL-100")
        assert cylinder_service.find_cylinder("CYL-100").id == cylinder.id
        assert cylinder_service.find_cylinder("  QR-CYL-100 ").id == cylinder.id

    def test_find_unknown(self, db_session):
        with pytest.raises(NotFoundError):
            cylinder_service.find_cylinder("CYL-404")

    def test_find_blank(self, db_session):
        with pytest.raises(ValidationError):
            cylinder_service.find_cylinder("  ")

    def test_list_available(self, db_session, outlet_a, outlet_b, make_cylinder):
        keep = make_cylinder(outlet_a, code="CYL-A1")
        make_cylinder(outlet_a, code="CYL-A2", status="leased")
        make_cylinder(outlet_a, code="CYL-A3", status="maintenance")
        make_cylinder(outlet_b, code="CYL-B1")
        assert [c.id for c in cylinder_service.list_available_cylinders(outlet_a.id)] == [keep.id]

    def test_list_outlets(self, db_session, outlet_a, outlet_b):
        assert [o.name for o in cylinder_service.list_outlets()] == ["Ikeja Outlet", "Lekki Outlet"]


# =============================================================================
# APPLY TRANSFER
# =============================================================================


class TestApplyTransfer:

    def test_moves_cylinder_and_records_transfer(self, db_session, outlet_a, outlet_b, make_cylinder):
        cylinder = make_cylinder(outlet_a)
        transfer = cylinder_service.apply_transfer(
            _command(cylinder, outlet_b, notes="weekend demand"), requested_by=9
        )

        assert transfer.source_outlet_id == outlet_a.id
        assert transfer.destination_outlet_id == outlet_b.id
        assert transfer.requested_by == 9
        assert transfer.notes == "weekend demand"
        moved = db_session.get(Cylinder, cylinder.id)
        assert moved.current_outlet_id == outlet_b.id
        assert moved.status == "available"

    def test_refuses_cylinder_leased_since_selection(self, db_session, outlet_a, outlet_b, make_cylinder):
        cylinder = make_cylinder(outlet_a)
        command = _command(cylinder, outlet_b)
        cylinder.status = "leased"
        db_session.commit()

        with pytest.raises(InvalidStateError, match="leased"):
            cylinder_service.apply_transfer(command, requested_by=9)
        assert db_session.query(Transfer).count() == 0

    def test_refuses_cylinder_moved_since_selection(self, db_session, outlet_a, outlet_b, make_cylinder):
        cylinder = make_cylinder(outlet_a)
        command = _command(cylinder, outlet_b)
        cylinder.current_outlet_id = outlet_b.id
        db_session.commit()

        with pytest.raises(InvalidStateError, match="no longer at outlet"):
            cylinder_service.apply_transfer(command, requested_by=9)

    def test_refuses_same_outlet(self, db_session, outlet_a, make_cylinder):
        cylinder = make_cylinder(outlet_a)
        with pytest.raises(ValidationError):
            cylinder_service.apply_transfer(_command(cylinder, outlet_a), requested_by=9)

    def test_refuses_unknown_destination(self, db_session, outlet_a, make_cylinder):
        cylinder = make_cylinder(outlet_a)
        command = TransferCommand(cylinder.id, outlet_a.id, 9999, "balancing")
        with pytest.raises(NotFoundError):
            cylinder_service.apply_transfer(command, requested_by=9)
        assert db_session.get(Cylinder, cylinder.id).current_outlet_id == outlet_a.id

    def test_other_reason_requires_custom_reason(self, db_session, outlet_a, outlet_b, make_cylinder):
        cylinder = make_cylinder(outlet_a)
        with pytest.raises(ValidationError):
            cylinder_service.apply_transfer(_command(cylinder, outlet_b, reason="other"), requested_by=9)

    def test_database_error_rolls_back_the_move(self, db_session, outlet_a, outlet_b, make_cylinder):
        cylinder = make_cylinder(outlet_a)
        with pytest.raises(IntegrityError):
            cylinder_service.apply_transfer(_command(cylinder, outlet_b), requested_by=None)
        assert db_session.get(Cylinder, cylinder.id).current_outlet_id == outlet_a.id
        assert db_session.query(Transfer).count() == 0

    def test_history(self, db_session, outlet_a, outlet_b, make_cylinder):
        cylinder = make_cylinder(outlet_a)
        first = cylinder_service.apply_transfer(_command(cylinder, outlet_b), requested_by=9)
        cylinder = db_session.get(Cylinder, cylinder.id)
        second = cylinder_service.apply_transfer(
            _command(cylinder, outlet_a, reason="other", custom_reason="Audit recall"), requested_by=9
        )

        history = cylinder_service.list_transfers(cylinder_id=cylinder.id)
        assert [t.id for t in history] == [second.id, first.id]
        assert history[0].reason_text == "Audit recall"
        assert [t.id for t in cylinder_service.list_transfers(source_outlet_id=outlet_b.id)] == [second.id]
        assert cylinder_service.list_transfers(from_date=datetime(2999, 1, 1)) == []


# =============================================================================
# WIZARD WITH DATABASE EXECUTOR
# =============================================================================


class TestWizardCommit:

    def test_bulk_transfer_all_committed(self, db_session, outlet_a, outlet_b, make_cylinder):
        cylinders = [make_cylinder(outlet_a) for _ in range(3)]

        wizard = TransferWizard()
        wizard.choose_type("bulk")
        wizard.advance()
        candidates = cylinder_service.list_available_cylinders(outlet_a.id)
        wizard.select_source_outlet(outlet_a.id, [c.to_snapshot() for c in candidates])
        wizard.select_cylinders([c.id for c in cylinders])
        wizard.advance()
        wizard.set_destination(outlet_b.id, "balancing")
        wizard.advance()

        report = wizard.commit(cylinder_service.transfer_executor(requested_by=9))

        assert report.all_committed
        assert all(isinstance(o.result, Transfer) for o in report.outcomes)
        assert cylinder_service.list_available_cylinders(outlet_a.id) == []
        assert len(cylinder_service.list_available_cylinders(outlet_b.id)) == 3

    def test_bulk_partial_failure_keeps_earlier_moves(self, db_session, outlet_a, outlet_b, make_cylinder):
        first, second, third = (make_cylinder(outlet_a) for _ in range(3))

        wizard = TransferWizard()
        wizard.choose_type("bulk")
        wizard.advance()
        wizard.select_source_outlet(
            outlet_a.id,
            [c.to_snapshot() for c in cylinder_service.list_available_cylinders(outlet_a.id)],
        )
        wizard.select_cylinders([first.id, second.id, third.id])
        wizard.advance()
        wizard.set_destination(outlet_b.id, "emergency")
        wizard.advance()

        # Someone leases the second cylinder while the operator reviews
        db_session.get(Cylinder, second.id).status = "leased"
        db_session.commit()

        report = wizard.commit(cylinder_service.transfer_executor(requested_by=9))

        assert [o.status for o in report.outcomes] == ["committed", "failed", "skipped"]
        assert "leased" in report.failed[0].error
        assert db_session.get(Cylinder, first.id).current_outlet_id == outlet_b.id
        assert db_session.get(Cylinder, second.id).current_outlet_id == outlet_a.id
        assert db_session.get(Cylinder, third.id).current_outlet_id == outlet_a.id
        assert db_session.query(Transfer).count() == 1

    def test_single_transfer_from_scan(self, db_session, outlet_a, outlet_b, make_cylinder):
        make_cylinder(outlet_a, code="CYL-555")
        snapshot = cylinder_service.find_cylinder("QR-CYL-555").to_snapshot()

        wizard = TransferWizard.for_cylinder(snapshot)
        wizard.advance()
        wizard.set_destination(outlet_b.id, "request", notes="Customer moving to Lekki")
        wizard.advance()
        report = wizard.commit(cylinder_service.transfer_executor(requested_by=9))

        assert report.all_committed
        assert cylinder_service.find_cylinder("CYL-555").current_outlet_id == outlet_b.id


class TestTransferConstraints:

    def test_source_and_destination_must_differ(self, db_session, outlet_a, make_cylinder):
        cylinder = make_cylinder(outlet_a)
        db_session.add(Transfer(
            cylinder_id=cylinder.id,
            source_outlet_id=outlet_a.id,
            destination_outlet_id=outlet_a.id,
            reason="balancing",
            requested_by=1,
        ))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db.session.rollback()
