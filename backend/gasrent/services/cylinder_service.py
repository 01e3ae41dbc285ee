"""
Cylinder lookup and transfer application against the database.

WHY: The transfer workflow (transfer_wizard) works on snapshots and only
emits TransferCommands. This module is the storage side: it supplies the
snapshots (scan lookup, an outlet's available stock) and applies each
command.

APPLY-TIME CHECK:
Eligibility was checked when the cylinder was selected, possibly minutes
earlier. apply_transfer() re-reads the cylinder under a row lock and
refuses the move unless it is still available at the command's source
outlet. The version_id column turns a concurrent writer into a
StaleDataError, which run_with_retry() retries from a fresh read.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Cylinder, Outlet, Transfer
from ..domain import CYLINDER_STATUS_AVAILABLE, TRANSFER_REASONS, TRANSFER_REASON_OTHER
from ..time_utils import to_naive_utc
from ..validation import InvalidStateError, NotFoundError, ValidationError, require_text
from .concurrency import lock_for_update, run_with_retry
from .transfer_wizard import TransferCommand, transfer_eligibility_error


# =============================================================================
# LOOKUPS
# =============================================================================

def find_cylinder(code_or_qr: str) -> Cylinder:
    """
    Resolve a typed code or a scanned QR payload to a cylinder.

    Raises:
        ValidationError: Empty input
        NotFoundError: No cylinder with that code or QR
    """
    value = require_text(code_or_qr, "cylinder_code")
    cylinder = db.session.query(Cylinder).filter(
        or_(Cylinder.code == value, Cylinder.qr_code == value)
    ).first()
    if not cylinder:
        raise NotFoundError(f"No cylinder found for code {value!r}")
    return cylinder


def list_available_cylinders(outlet_id: int) -> list[Cylinder]:
    """Cylinders at `outlet_id` that can enter a bulk transfer."""
    return db.session.query(Cylinder).filter_by(
        current_outlet_id=outlet_id,
        status=CYLINDER_STATUS_AVAILABLE,
    ).order_by(Cylinder.code).all()


def get_outlet(outlet_id: int) -> Outlet | None:
    return db.session.get(Outlet, outlet_id)


def list_outlets(active_only: bool = True) -> list[Outlet]:
    query = db.session.query(Outlet)
    if active_only:
        query = query.filter_by(is_active=True)
    return query.order_by(Outlet.name).all()


# =============================================================================
# TRANSFER APPLICATION
# =============================================================================

def apply_transfer(command: TransferCommand, requested_by: int) -> Transfer:
    """
    Apply one transfer command: record the Transfer and move the cylinder.

    Args:
        command: Command emitted by TransferWizard
        requested_by: User performing the transfer

    Returns:
        Transfer: The created (committed) transfer record

    Raises:
        ValidationError: Command is malformed (same outlet, bad reason)
        NotFoundError: Cylinder or destination outlet does not exist
        InvalidStateError: Cylinder is no longer available at the source outlet
    """
    if command.destination_outlet_id == command.source_outlet_id:
        raise ValidationError("Destination outlet must be different from the source outlet")
    if command.reason not in TRANSFER_REASONS:
        raise ValidationError(f"Unknown transfer reason {command.reason!r}")
    if command.reason == TRANSFER_REASON_OTHER and not command.custom_reason:
        raise ValidationError("Custom reason is required when reason is other")

    def _op():
        cylinder = lock_for_update(
            db.session.query(Cylinder).filter_by(id=command.cylinder_id)
        ).first()
        if not cylinder:
            raise NotFoundError(f"Cylinder {command.cylinder_id} not found")

        message = transfer_eligibility_error(cylinder)
        if message:
            raise InvalidStateError(f"{message} ({cylinder.code})")

        if cylinder.current_outlet_id != command.source_outlet_id:
            raise InvalidStateError(
                f"Cylinder {cylinder.code} is no longer at outlet {command.source_outlet_id} "
                f"(now at outlet {cylinder.current_outlet_id})"
            )

        if not get_outlet(command.destination_outlet_id):
            raise NotFoundError(f"Outlet {command.destination_outlet_id} not found")

        transfer = Transfer(
            cylinder_id=cylinder.id,
            source_outlet_id=command.source_outlet_id,
            destination_outlet_id=command.destination_outlet_id,
            reason=command.reason,
            custom_reason=command.custom_reason,
            notes=command.notes,
            requested_by=requested_by,
        )
        db.session.add(transfer)

        cylinder.current_outlet_id = command.destination_outlet_id

        db.session.commit()
        return transfer

    try:
        transfer = run_with_retry(_op)
    except (ValidationError, InvalidStateError, NotFoundError) as exc:
        db.session.rollback()
        current_app.logger.warning("Transfer of cylinder %s refused: %s", command.cylinder_id, exc)
        raise
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Transfer of cylinder %s failed", command.cylinder_id)
        raise

    current_app.logger.info(
        "Transferred cylinder %s from outlet %s to outlet %s (transfer %s)",
        transfer.cylinder_id,
        transfer.source_outlet_id,
        transfer.destination_outlet_id,
        transfer.id,
    )
    return transfer


def transfer_executor(requested_by: int):
    """Executor for TransferWizard.commit() bound to the acting user."""
    def _execute(command: TransferCommand) -> Transfer:
        return apply_transfer(command, requested_by=requested_by)
    return _execute


# =============================================================================
# QUERIES
# =============================================================================

def list_transfers(
    *,
    cylinder_id: int | None = None,
    source_outlet_id: int | None = None,
    destination_outlet_id: int | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
) -> list[Transfer]:
    """Transfer history, newest first."""
    query = db.session.query(Transfer)
    if cylinder_id is not None:
        query = query.filter(Transfer.cylinder_id == cylinder_id)
    if source_outlet_id is not None:
        query = query.filter(Transfer.source_outlet_id == source_outlet_id)
    if destination_outlet_id is not None:
        query = query.filter(Transfer.destination_outlet_id == destination_outlet_id)
    if from_date is not None:
        query = query.filter(Transfer.created_at >= to_naive_utc(from_date))
    if to_date is not None:
        query = query.filter(Transfer.created_at <= to_naive_utc(to_date))
    return query.order_by(Transfer.created_at.desc(), Transfer.id.desc()).all()
