"""
============================================================================
Installment Status State Machine
============================================================================

Decimal Integrity: Payment comparisons use the configured amount tolerance
Traceability: Status changes logged with correlation_id

INSTALLMENT LIFECYCLE:
    Status is derived from payment and date evidence, then clamped against
    the stored status so that recomputation cannot make it oscillate.

    derive_installment_status():
        1. stored CANCELLED              → CANCELLED
        2. paid >= amount - tolerance    → PAID
        3. paid > 0                      → PARTIALLY_PAID
        4. reference date > due date     → OVERDUE
        5. stored SCHEDULED or PENDING   → stored (manual pre-due state)
        6. otherwise                     → SCHEDULED

    clamp_installment_status():
        - CANCELLED always wins
        - PARTIALLY_PAID may be upgraded to PAID
        - PAID is kept while paid >= amount - tolerance, even if the
          derivation disagrees
        - PARTIALLY_PAID with nothing paid (refund) follows the derivation
        - PENDING is not reverted to SCHEDULED
        - otherwise the derived status

    Terminal State: CANCELLED (no outbound transitions)
============================================================================
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Any, Iterable, List
import logging

from billing.config import EngineConfig, resolve_config
from billing.installment_normalizer import coerce_date
from billing.money import round_currency
from billing.records import read_field
from billing.schemas import (
    InstallmentStatus,
    InstallmentTotals,
    NormalizedInstallmentInput,
)

# Configure module logger
logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


# =============================================================================
# Constants
# =============================================================================

# Terminal statuses (no outbound transitions)
TERMINAL_STATUSES: List[InstallmentStatus] = [InstallmentStatus.CANCELLED]

# Statuses a caller may set by hand before any payment or due-date evidence
PRE_DUE_STATUSES: List[InstallmentStatus] = [
    InstallmentStatus.SCHEDULED,
    InstallmentStatus.PENDING,
]


@dataclass(frozen=True)
class _InstallmentView:
    amount: Decimal
    paid_amount: Decimal
    due_date: Optional[datetime]
    status: InstallmentStatus


def _view(installment: Any) -> _InstallmentView:
    if isinstance(installment, NormalizedInstallmentInput):
        return _InstallmentView(
            amount=installment.amount,
            paid_amount=installment.paid_amount,
            due_date=installment.due_date,
            status=installment.status,
        )
    return _InstallmentView(
        amount=round_currency(read_field(installment, "amount")),
        paid_amount=round_currency(read_field(installment, "paidAmount", "paid_amount")),
        due_date=coerce_date(read_field(installment, "dueDate", "due_date")),
        status=InstallmentStatus.parse_or_default(read_field(installment, "status")),
    )


def _reference(reference_date: Optional[datetime]) -> datetime:
    if reference_date is None:
        return datetime.now(timezone.utc)
    if reference_date.tzinfo is None:
        return reference_date.replace(tzinfo=timezone.utc)
    return reference_date


def _is_paid_in_full(view: _InstallmentView, tolerance: Decimal) -> bool:
    return view.paid_amount >= view.amount - tolerance


# =============================================================================
# Derivation
# =============================================================================

def derive_installment_status(
    installment: Any,
    reference_date: Optional[datetime] = None,
    config: Optional[EngineConfig] = None
) -> InstallmentStatus:
    """
    Derive an installment's status from payment and due-date evidence.

    Args:
        installment: NormalizedInstallmentInput or raw mapping/object with
            amount, paidAmount, dueDate and status
        reference_date: "Now" for overdue checks (default: current UTC time)
        config: Engine configuration (amount tolerance)

    Returns:
        Derived InstallmentStatus
    """
    config = resolve_config(config)
    view = _view(installment)
    reference = _reference(reference_date)

    if view.status is InstallmentStatus.CANCELLED:
        return InstallmentStatus.CANCELLED

    if _is_paid_in_full(view, config.amount_tolerance):
        return InstallmentStatus.PAID

    if view.paid_amount > 0:
        return InstallmentStatus.PARTIALLY_PAID

    if view.due_date is not None and reference > view.due_date:
        return InstallmentStatus.OVERDUE

    if view.status in PRE_DUE_STATUSES:
        return view.status

    return InstallmentStatus.SCHEDULED


def clamp_installment_status(
    installment: Any,
    reference_date: Optional[datetime] = None,
    config: Optional[EngineConfig] = None
) -> InstallmentStatus:
    """
    Derive a status, then reconcile it with the stored status.

    Prevents a settled installment from being downgraded by a stale
    recomputation and keeps manual PENDING from reverting to SCHEDULED.
    """
    config = resolve_config(config)
    view = _view(installment)
    stored = view.status
    derived = derive_installment_status(installment, reference_date, config)

    if stored is InstallmentStatus.CANCELLED:
        return InstallmentStatus.CANCELLED

    if stored is InstallmentStatus.PARTIALLY_PAID and derived is InstallmentStatus.PAID:
        return InstallmentStatus.PAID

    if (
        stored is InstallmentStatus.PAID
        and derived is not InstallmentStatus.PAID
        and _is_paid_in_full(view, config.amount_tolerance)
    ):
        return InstallmentStatus.PAID

    if stored is InstallmentStatus.PARTIALLY_PAID and view.paid_amount <= 0:
        return derived

    if stored is InstallmentStatus.PENDING and derived is InstallmentStatus.SCHEDULED:
        return InstallmentStatus.PENDING

    return derived


def refresh_installment_statuses(
    installments: Iterable[NormalizedInstallmentInput],
    reference_date: Optional[datetime] = None,
    config: Optional[EngineConfig] = None,
    correlation_id: Optional[str] = None
) -> List[NormalizedInstallmentInput]:
    """
    Apply clamp_installment_status() to every installment.

    All installments are evaluated against the same reference date.

    Returns:
        New list; unchanged installments are returned as-is
    """
    config = resolve_config(config)
    reference = _reference(reference_date)
    refreshed = []

    for installment in installments:
        status = clamp_installment_status(installment, reference, config)
        if status is not installment.status:
            logger.debug(
                f"[BILL-INST] Status transition | sequence={installment.sequence} | "
                f"{installment.status.value} → {status.value} | "
                f"correlation_id={correlation_id}"
            )
            installment = replace(installment, status=status)
        refreshed.append(installment)

    return refreshed


# =============================================================================
# Totals
# =============================================================================

def calculate_installment_totals(installments: Iterable[Any]) -> InstallmentTotals:
    """
    Sum scheduled and paid amounts.

    Each installment credits at most its own amount, so an overpayment on
    one installment cannot hide an unpaid sibling.
    """
    scheduled = ZERO
    paid = ZERO

    for installment in installments:
        view = _view(installment)
        scheduled += view.amount
        paid += min(view.amount, view.paid_amount)

    return InstallmentTotals(
        scheduled=round_currency(scheduled),
        paid=round_currency(paid),
    )


# =============================================================================
# Utility Functions
# =============================================================================

def is_terminal_status(status: Any) -> bool:
    """True when no further status changes are possible."""
    return InstallmentStatus.parse(status) in TERMINAL_STATUSES


__all__ = [
    "TERMINAL_STATUSES",
    "PRE_DUE_STATUSES",
    "derive_installment_status",
    "clamp_installment_status",
    "refresh_installment_statuses",
    "calculate_installment_totals",
    "is_terminal_status",
]
