"""
Pytest fixtures for the rental core tests.

Provides an in-memory database, reference outlets, and factories for
cylinders and leases. Core computation tests (status, settlement, transfer
workflow) use plain snapshots and need none of these.
"""

from datetime import datetime
from decimal import Decimal

import pytest
from gasrent import create_app
from gasrent.config import TestConfig
from gasrent.extensions import db
from gasrent.models import Outlet, Cylinder, Lease
from gasrent.domain import CYLINDER_STATUS_AVAILABLE, CYLINDER_STATUS_LEASED, LEASE_STATUS_ACTIVE


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def cli_runner(app):
    """Runner for Flask CLI commands."""
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def outlet_a(db_session):
    """Create Outlet A (Ikeja)."""
    outlet = Outlet(name="Ikeja Outlet", location="Ikeja, Lagos")
    db_session.add(outlet)
    db_session.commit()
    return outlet


@pytest.fixture(scope='function')
def outlet_b(db_session):
    """Create Outlet B (Lekki)."""
    outlet = Outlet(name="Lekki Outlet", location="Lekki, Lagos")
    db_session.add(outlet)
    db_session.commit()
    return outlet


@pytest.fixture(scope='function')
def make_cylinder(db_session):
    """Factory: cylinder at an outlet with the given status."""
    counter = {"n": 0}

    def _make(outlet, status=CYLINDER_STATUS_AVAILABLE, code=None):
        counter["n"] += 1
        code = code or f"CYL-{counter['n']:06d}"
        cylinder = Cylinder(
            code=code,
            qr_code=f"QR-{code}",
            capacity_class="12.5kg",
            status=status,
            current_outlet_id=outlet.id,
            current_gas_volume=Decimal("12.50"),
            max_gas_volume=Decimal("12.50"),
        )
        db_session.add(cylinder)
        db_session.commit()
        return cylinder

    return _make


@pytest.fixture(scope='function')
def make_lease(db_session):
    """Factory: active lease on a cylinder (cylinder is marked leased)."""
    def _make(cylinder, deposit_cents=200_000, expected_return_date=None, lease_date=datetime(2024, 1, 1)):
        lease = Lease(
            customer_id=501,
            staff_id=7,
            cylinder_id=cylinder.id,
            outlet_id=cylinder.current_outlet_id,
            lease_date=lease_date,
            expected_return_date=expected_return_date,
            deposit_amount_cents=deposit_cents,
            lease_amount_cents=50_000,
            status=LEASE_STATUS_ACTIVE,
        )
        cylinder.status = CYLINDER_STATUS_LEASED
        db_session.add(lease)
        db_session.commit()
        return lease

    return _make
