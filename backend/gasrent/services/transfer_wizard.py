"""
Cylinder transfer workflow.

WHY: Moving cylinders between outlets is a multi-step operation where the
inputs required at each step depend on what was chosen earlier (one
cylinder scanned by code, or many picked from a source outlet). Each step
has its own guard so a bad input is rejected at the step that owns it.

STEPS:
1. SELECT_TYPE: single or bulk
2. SELECT_CYLINDERS: one eligible cylinder (single) or source outlet +
   one or more of its available cylinders (bulk)
3. SELECT_DESTINATION_REASON: destination outlet, reason, notes
4. REVIEW: read-only summary
5. COMMITTED: commands executed

Forward moves run the current step's guard. Backward moves are always
allowed; stepping back from SELECT_TYPE cancels the workflow.

COMMIT SEMANTICS:
Bulk commit executes one command per cylinder, in selection order, and is
NOT atomic. The first failing command stops the run: earlier commands stay
committed, later ones are reported as skipped. Every outcome is returned in
a CommitReport; item failures are never raised.

Eligibility is checked at selection time only. The executor supplied by
the caller is expected to re-validate at apply time
(see cylinder_service.apply_transfer).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from ..domain import (
    CYLINDER_STATUS_AVAILABLE,
    CYLINDER_STATUS_DAMAGED,
    CYLINDER_STATUS_LEASED,
    TRANSFER_REASON_LABELS,
    TRANSFER_REASON_OTHER,
    TRANSFER_REASONS,
    TRANSFER_TYPE_BULK,
    TRANSFER_TYPE_SINGLE,
    TRANSFER_TYPES,
)
from ..validation import InvalidStateError, ValidationError, optional_text


# =============================================================================
# WORKFLOW STEPS
# =============================================================================

STEP_SELECT_TYPE = "select_type"
STEP_SELECT_CYLINDERS = "select_cylinders"
STEP_SELECT_DESTINATION_REASON = "select_destination_reason"
STEP_REVIEW = "review"
STEP_COMMITTED = "committed"
STEP_CANCELLED = "cancelled"

WIZARD_STEPS = (
    STEP_SELECT_TYPE,
    STEP_SELECT_CYLINDERS,
    STEP_SELECT_DESTINATION_REASON,
    STEP_REVIEW,
)


# =============================================================================
# ELIGIBILITY
# =============================================================================

INELIGIBLE_STATUS_MESSAGES = {
    CYLINDER_STATUS_LEASED: "Cannot transfer a leased cylinder",
    CYLINDER_STATUS_DAMAGED: "Cannot transfer a damaged cylinder",
}


def transfer_eligibility_error(cylinder) -> str | None:
    """Why `cylinder` cannot be transferred, or None if it can."""
    if cylinder.status == CYLINDER_STATUS_AVAILABLE:
        return None
    return INELIGIBLE_STATUS_MESSAGES.get(
        cylinder.status,
        f"Cannot transfer a cylinder with status {cylinder.status}. Only available cylinders can be transferred",
    )


def check_transfer_eligibility(cylinder) -> None:
    """Raise InvalidStateError unless `cylinder` is available."""
    message = transfer_eligibility_error(cylinder)
    if message:
        raise InvalidStateError(f"{message} ({cylinder.code})")


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class GuardResult:
    errors: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors

    @classmethod
    def passed(cls) -> "GuardResult":
        return cls()

    @classmethod
    def failed(cls, *errors: str) -> "GuardResult":
        return cls(errors=tuple(errors))


@dataclass(frozen=True)
class TransferCommand:
    """One cylinder move for the caller to apply."""
    cylinder_id: int
    source_outlet_id: int
    destination_outlet_id: int
    reason: str
    custom_reason: str | None = None
    notes: str | None = None

    @property
    def reason_text(self) -> str:
        if self.reason == TRANSFER_REASON_OTHER and self.custom_reason:
            return self.custom_reason
        return TRANSFER_REASON_LABELS[self.reason]

    def to_dict(self) -> dict:
        return {
            "cylinder_id": self.cylinder_id,
            "source_outlet_id": self.source_outlet_id,
            "destination_outlet_id": self.destination_outlet_id,
            "reason": self.reason,
            "custom_reason": self.custom_reason,
            "notes": self.notes,
        }


COMMIT_STATUS_COMMITTED = "committed"
COMMIT_STATUS_FAILED = "failed"
COMMIT_STATUS_SKIPPED = "skipped"


@dataclass(frozen=True)
class CommitOutcome:
    command: TransferCommand
    status: str
    result: Any = None
    error: str | None = None

    def to_dict(self) -> dict:
        payload = {
            "cylinder_id": self.command.cylinder_id,
            "status": self.status,
            "error": self.error,
        }
        if self.result is not None and hasattr(self.result, "to_dict"):
            payload["transfer"] = self.result.to_dict()
        return payload


@dataclass(frozen=True)
class CommitReport:
    outcomes: tuple[CommitOutcome, ...]

    def _with_status(self, status: str) -> list[CommitOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def committed(self) -> list[CommitOutcome]:
        return self._with_status(COMMIT_STATUS_COMMITTED)

    @property
    def failed(self) -> list[CommitOutcome]:
        return self._with_status(COMMIT_STATUS_FAILED)

    @property
    def skipped(self) -> list[CommitOutcome]:
        return self._with_status(COMMIT_STATUS_SKIPPED)

    @property
    def all_committed(self) -> bool:
        return len(self.committed) == len(self.outcomes)

    @property
    def partial(self) -> bool:
        return bool(self.committed) and not self.all_committed

    def to_dict(self) -> dict:
        return {
            "total": len(self.outcomes),
            "committed": len(self.committed),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


# =============================================================================
# STEP GUARDS
# =============================================================================

def guard_select_type(wizard: "TransferWizard") -> GuardResult:
    if wizard.transfer_type not in TRANSFER_TYPES:
        return GuardResult.failed("Choose a transfer type (single or bulk)")
    return GuardResult.passed()


def guard_select_cylinders(wizard: "TransferWizard") -> GuardResult:
    if wizard.transfer_type == TRANSFER_TYPE_SINGLE:
        if wizard.cylinder is None:
            return GuardResult.failed("Please select a cylinder to transfer")
        message = transfer_eligibility_error(wizard.cylinder)
        if message:
            return GuardResult.failed(message)
        return GuardResult.passed()

    errors = []
    if wizard.source_outlet_id is None:
        errors.append("Source outlet is required")
    if not wizard.selected_cylinder_ids:
        errors.append("Please select cylinders to transfer")
    for cylinder_id in wizard.selected_cylinder_ids:
        if cylinder_id not in wizard.candidates:
            errors.append(f"Cylinder {cylinder_id} is no longer available at the source outlet")
    return GuardResult.failed(*errors) if errors else GuardResult.passed()


def guard_select_destination_reason(wizard: "TransferWizard") -> GuardResult:
    errors = []

    if wizard.destination_outlet_id is None:
        errors.append("Destination outlet is required")
    elif wizard.destination_outlet_id == wizard.origin_outlet_id:
        errors.append("Destination outlet must be different from the source outlet")

    if wizard.reason is None:
        errors.append("Transfer reason is required")
    elif wizard.reason not in TRANSFER_REASONS:
        errors.append(f"Unknown transfer reason {wizard.reason!r}")
    elif wizard.reason == TRANSFER_REASON_OTHER and not wizard.custom_reason:
        errors.append("Please specify the reason for this transfer")

    return GuardResult.failed(*errors) if errors else GuardResult.passed()


def guard_review(wizard: "TransferWizard") -> GuardResult:
    return GuardResult.passed()


STEP_GUARDS: dict[str, Callable[["TransferWizard"], GuardResult]] = {
    STEP_SELECT_TYPE: guard_select_type,
    STEP_SELECT_CYLINDERS: guard_select_cylinders,
    STEP_SELECT_DESTINATION_REASON: guard_select_destination_reason,
    STEP_REVIEW: guard_review,
}


# =============================================================================
# WORKFLOW
# =============================================================================

@dataclass
class TransferWizard:
    """
    Local selection state for one transfer workflow.

    Not shared between workflows; abandoning the object before commit()
    is a cancellation.
    """
    step: str = STEP_SELECT_TYPE
    transfer_type: str | None = None

    # single
    cylinder: Any = None

    # bulk
    source_outlet_id: int | None = None
    candidates: dict[int, Any] = field(default_factory=dict)
    selected_cylinder_ids: list[int] = field(default_factory=list)

    destination_outlet_id: int | None = None
    reason: str | None = None
    custom_reason: str | None = None
    notes: str | None = None

    report: CommitReport | None = None

    @classmethod
    def for_cylinder(cls, cylinder) -> "TransferWizard":
        """Start a single transfer with `cylinder` already scanned."""
        wizard = cls()
        wizard.choose_type(TRANSFER_TYPE_SINGLE)
        wizard.advance()
        wizard.select_cylinder(cylinder)
        return wizard

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def _require_step(self, *steps: str) -> None:
        if self.step not in steps:
            raise InvalidStateError(
                f"Operation not allowed at step {self.step}. Expected: {', '.join(steps)}"
            )

    def check_step(self) -> GuardResult:
        """Run the guard of the current step without moving."""
        self._require_step(*WIZARD_STEPS)
        return STEP_GUARDS[self.step](self)

    def advance(self) -> str:
        """
        Move to the next step if the current step's guard passes.

        Raises:
            ValidationError: Guard failed (message lists every problem)
            InvalidStateError: Workflow is finished, or at REVIEW (use commit())
        """
        self._require_step(STEP_SELECT_TYPE, STEP_SELECT_CYLINDERS, STEP_SELECT_DESTINATION_REASON)
        result = self.check_step()
        if not result.ok:
            raise ValidationError("; ".join(result.errors), field=self.step)
        self.step = WIZARD_STEPS[WIZARD_STEPS.index(self.step) + 1]
        return self.step

    def back(self) -> str:
        """Step back one step; from SELECT_TYPE this cancels the workflow."""
        self._require_step(*WIZARD_STEPS)
        index = WIZARD_STEPS.index(self.step)
        self.step = STEP_CANCELLED if index == 0 else WIZARD_STEPS[index - 1]
        return self.step

    # -------------------------------------------------------------------------
    # SELECT_TYPE
    # -------------------------------------------------------------------------

    def choose_type(self, transfer_type: str) -> None:
        self._require_step(STEP_SELECT_TYPE)
        if transfer_type not in TRANSFER_TYPES:
            raise ValidationError(
                f"Unknown transfer type {transfer_type!r}. Expected one of: {', '.join(TRANSFER_TYPES)}",
                field="transfer_type",
            )
        if transfer_type != self.transfer_type:
            self._clear_selection()
        self.transfer_type = transfer_type

    def _clear_selection(self) -> None:
        self.cylinder = None
        self.source_outlet_id = None
        self.candidates = {}
        self.selected_cylinder_ids = []

    # -------------------------------------------------------------------------
    # SELECT_CYLINDERS
    # -------------------------------------------------------------------------

    def select_cylinder(self, cylinder) -> None:
        """
        Single transfer: hold the cylinder resolved from a code or QR scan.

        Raises:
            InvalidStateError: Cylinder is not available (leased and damaged
                cylinders get their own messages); selection is unchanged
        """
        self._require_step(STEP_SELECT_CYLINDERS)
        if self.transfer_type != TRANSFER_TYPE_SINGLE:
            raise InvalidStateError("select_cylinder() is only valid for single transfers")
        check_transfer_eligibility(cylinder)
        self.cylinder = cylinder

    def select_source_outlet(self, outlet_id: int, cylinders: Iterable) -> list:
        """
        Bulk transfer: choose the source outlet and load its candidates.

        `cylinders` is the caller's snapshot of that outlet's stock; only
        cylinders currently available at `outlet_id` become candidates.
        Changing the outlet clears the selection; reloading the same outlet
        keeps only the selected cylinders that are still candidates.

        Returns:
            The candidate cylinders, in the order supplied
        """
        self._require_step(STEP_SELECT_CYLINDERS)
        if self.transfer_type != TRANSFER_TYPE_BULK:
            raise InvalidStateError("select_source_outlet() is only valid for bulk transfers")
        if outlet_id is None:
            raise ValidationError("Source outlet is required", field="source_outlet_id")

        if outlet_id != self.source_outlet_id:
            self.selected_cylinder_ids = []
        self.source_outlet_id = outlet_id
        self.candidates = {
            c.id: c
            for c in cylinders
            if c.current_outlet_id == outlet_id and c.status == CYLINDER_STATUS_AVAILABLE
        }
        self.selected_cylinder_ids = [cid for cid in self.selected_cylinder_ids if cid in self.candidates]
        return list(self.candidates.values())

    def select_cylinders(self, cylinder_ids: Iterable[int]) -> None:
        """Bulk transfer: replace the selection with `cylinder_ids`."""
        self._require_step(STEP_SELECT_CYLINDERS)
        if self.transfer_type != TRANSFER_TYPE_BULK:
            raise InvalidStateError("select_cylinders() is only valid for bulk transfers")
        if self.source_outlet_id is None:
            raise ValidationError("Select a source outlet first", field="source_outlet_id")

        selected: list[int] = []
        for cylinder_id in cylinder_ids:
            if cylinder_id not in self.candidates:
                raise ValidationError(
                    f"Cylinder {cylinder_id} is not available at outlet {self.source_outlet_id}",
                    field="cylinder_ids",
                )
            if cylinder_id not in selected:
                selected.append(cylinder_id)
        self.selected_cylinder_ids = selected

    def deselect_cylinder(self, cylinder_id: int) -> None:
        self._require_step(STEP_SELECT_CYLINDERS)
        if cylinder_id in self.selected_cylinder_ids:
            self.selected_cylinder_ids.remove(cylinder_id)

    @property
    def selected_cylinders(self) -> list:
        if self.transfer_type == TRANSFER_TYPE_SINGLE:
            return [self.cylinder] if self.cylinder is not None else []
        return [self.candidates[cid] for cid in self.selected_cylinder_ids]

    @property
    def origin_outlet_id(self) -> int | None:
        """Outlet the cylinders leave from."""
        if self.transfer_type == TRANSFER_TYPE_SINGLE:
            return self.cylinder.current_outlet_id if self.cylinder is not None else None
        return self.source_outlet_id

    # -------------------------------------------------------------------------
    # SELECT_DESTINATION_REASON
    # -------------------------------------------------------------------------

    def set_destination(
        self,
        destination_outlet_id: int | None,
        reason: str | None,
        custom_reason: str | None = None,
        notes: str | None = None,
    ) -> None:
        """Record destination and reason; validated by advance()."""
        self._require_step(STEP_SELECT_DESTINATION_REASON)
        self.destination_outlet_id = destination_outlet_id
        self.reason = reason
        self.custom_reason = optional_text(custom_reason) if reason == TRANSFER_REASON_OTHER else None
        self.notes = optional_text(notes)

    # -------------------------------------------------------------------------
    # REVIEW / COMMIT
    # -------------------------------------------------------------------------

    def build_commands(self) -> list[TransferCommand]:
        return [
            TransferCommand(
                cylinder_id=cylinder.id,
                source_outlet_id=self.origin_outlet_id,
                destination_outlet_id=self.destination_outlet_id,
                reason=self.reason,
                custom_reason=self.custom_reason,
                notes=self.notes,
            )
            for cylinder in self.selected_cylinders
        ]

    def review(self) -> dict:
        """Summary shown on the confirmation step."""
        self._require_step(STEP_REVIEW)
        cylinders = self.selected_cylinders
        return {
            "transfer_type": self.transfer_type,
            "cylinder_count": len(cylinders),
            "cylinders": [{"id": c.id, "code": c.code} for c in cylinders],
            "source_outlet_id": self.origin_outlet_id,
            "destination_outlet_id": self.destination_outlet_id,
            "reason": self.reason,
            "reason_label": TRANSFER_REASON_LABELS[self.reason],
            "custom_reason": self.custom_reason,
            "notes": self.notes,
        }

    def commit(self, execute: Callable[[TransferCommand], Any]) -> CommitReport:
        """
        Execute the transfer commands in order through `execute`.

        `execute` applies one command against storage and returns the
        created transfer record; any exception it raises marks that item
        failed and stops the run.

        Returns:
            CommitReport with one outcome per command
        """
        self._require_step(STEP_REVIEW)
        commands = self.build_commands()
        # Past this point the workflow can no longer be cancelled
        self.step = STEP_COMMITTED

        outcomes: list[CommitOutcome] = []
        failed = False
        for command in commands:
            if failed:
                outcomes.append(CommitOutcome(command=command, status=COMMIT_STATUS_SKIPPED))
                continue
            try:
                result = execute(command)
            except Exception as exc:
                failed = True
                outcomes.append(CommitOutcome(command=command, status=COMMIT_STATUS_FAILED, error=str(exc)))
                continue
            outcomes.append(CommitOutcome(command=command, status=COMMIT_STATUS_COMMITTED, result=result))

        self.report = CommitReport(outcomes=tuple(outcomes))
        return self.report
