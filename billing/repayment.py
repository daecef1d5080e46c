"""
============================================================================
Repayment Schedules - Generation and Allocation
============================================================================

Decimal Integrity: Entry amounts quantized to 0.01; the final entry absorbs
                   the rounding remainder so the schedule sums to the principal
Traceability: correlation_id echoed in every log line

REPAYMENT SCHEDULES:
    A lump-sum principal (e.g. a salary advance) is split into N monthly
    entries. Payments are tracked as one cumulative repaid amount, which
    is allocated greedily across the schedule to derive entry statuses
    and the next due date.

    Entries are binary: PAID or PENDING. There is no partially-paid state
    here, unlike invoice installments.

ERROR CODES:
    - BILL-REP-001: Final entry is not positive (pathological rounding)
============================================================================
"""

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN
from typing import Optional, Any, List
import logging

from dateutil.relativedelta import relativedelta

from billing.config import EngineConfig, resolve_config
from billing.errors import BillingErrorCode
from billing.installment_normalizer import coerce_date
from billing.metrics import record_repayment_allocation
from billing.money import sanitize_number, round_currency
from billing.records import read_field, as_list, is_record
from billing.schemas import (
    RepaymentStatus,
    RepaymentScheduleEntry,
    RepaymentAllocation,
    RepaymentApplication,
    SalaryAdvanceStatus,
)

# Configure module logger
logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

# Advance statuses that move to IN_REPAYMENT once a partial payment lands
REPAYABLE_STATUSES: List[SalaryAdvanceStatus] = [
    SalaryAdvanceStatus.APPROVED,
    SalaryAdvanceStatus.DISBURSED,
    SalaryAdvanceStatus.IN_REPAYMENT,
]


# =============================================================================
# Schedule Generation
# =============================================================================

def generate_repayment_schedule(
    amount: Any,
    months: Any,
    start_date: Any = None,
    correlation_id: Optional[str] = None
) -> List[RepaymentScheduleEntry]:
    """
    Split a principal into monthly entries.

    Every entry but the last gets round(amount / months); the last gets
    whatever is left, so the entries always sum to the principal exactly.
    Due dates step one calendar month at a time from start_date, clamped
    to month end (Jan 31 → Feb 28 → Mar 31).

    Args:
        amount: Principal
        months: Number of monthly entries
        start_date: First due date (default: now, UTC)
        correlation_id: Audit trail identifier

    Returns:
        Schedule entries, all PENDING; empty when amount or months <= 0
    """
    principal = round_currency(amount, correlation_id)
    month_count = int(sanitize_number(months, correlation_id).to_integral_value(rounding=ROUND_DOWN))

    if month_count <= 0 or principal <= 0:
        return []

    start = coerce_date(start_date) or datetime.now(timezone.utc)
    base_amount = round_currency(principal / month_count)

    schedule: List[RepaymentScheduleEntry] = []
    allocated = ZERO

    for index in range(month_count):
        if index == month_count - 1:
            entry_amount = round_currency(principal - allocated)
        else:
            entry_amount = base_amount
        allocated += entry_amount

        schedule.append(RepaymentScheduleEntry(
            due_date=start + relativedelta(months=index),
            amount=entry_amount,
            status=RepaymentStatus.PENDING,
        ))

    final_amount = schedule[-1].amount
    if final_amount <= 0:
        logger.warning(
            f"[{BillingErrorCode.NON_POSITIVE_FINAL_ENTRY}] Final repayment entry is not positive | "
            f"principal={principal} | months={month_count} | base={base_amount} | "
            f"final={final_amount} | correlation_id={correlation_id}"
        )

    logger.debug(
        f"[BILL-REP] Schedule generated | principal={principal} | "
        f"months={month_count} | base={base_amount} | final={final_amount} | "
        f"correlation_id={correlation_id}"
    )

    return schedule


# =============================================================================
# Allocation
# =============================================================================

def _coerce_entry(entry: Any) -> RepaymentScheduleEntry:
    if isinstance(entry, RepaymentScheduleEntry):
        return entry
    return RepaymentScheduleEntry(
        due_date=coerce_date(read_field(entry, "dueDate", "due_date")),
        amount=round_currency(read_field(entry, "amount")),
        status=RepaymentStatus.parse_or_default(read_field(entry, "status")),
    )


def update_repayment_statuses(
    schedule: Any,
    repaid_amount_total: Any,
    config: Optional[EngineConfig] = None,
    correlation_id: Optional[str] = None
) -> RepaymentAllocation:
    """
    Allocate a cumulative repaid amount across a schedule, left to right.

    ============================================================================
    ALLOCATION PROCEDURE:
    ============================================================================
    remaining = repaid_amount_total
    for each entry in schedule order:
        remaining >= amount - tolerance → PAID, remaining -= amount
        otherwise                       → PENDING (first one sets next_due_date)
    ============================================================================

    Args:
        schedule: RepaymentScheduleEntry list or persisted entry mappings
        repaid_amount_total: Everything repaid so far
        config: Engine configuration (amount tolerance)
        correlation_id: Audit trail identifier

    Returns:
        RepaymentAllocation; next_due_date is None when every entry is PAID
    """
    config = resolve_config(config)
    tolerance = config.amount_tolerance
    remaining = sanitize_number(repaid_amount_total, correlation_id)

    updated: List[RepaymentScheduleEntry] = []
    next_due_date = None
    found_pending = False

    for raw_entry in as_list(schedule):
        if not is_record(raw_entry):
            continue
        entry = _coerce_entry(raw_entry)

        if remaining >= entry.amount - tolerance:
            updated.append(replace(entry, status=RepaymentStatus.PAID))
            remaining -= entry.amount
        else:
            updated.append(replace(entry, status=RepaymentStatus.PENDING))
            if not found_pending:
                found_pending = True
                next_due_date = entry.due_date

    record_repayment_allocation(not found_pending, config)

    logger.debug(
        f"[BILL-REP] Repayment allocated | entries={len(updated)} | "
        f"paid={sum(1 for e in updated if e.status is RepaymentStatus.PAID)} | "
        f"next_due_date={next_due_date} | correlation_id={correlation_id}"
    )

    return RepaymentAllocation(schedule=updated, next_due_date=next_due_date)


# =============================================================================
# Salary Advance Payments
# =============================================================================

def apply_repayment(
    advance_amount: Any,
    repaid_amount: Any,
    payment_amount: Any,
    schedule: Any,
    current_status: Any = None,
    config: Optional[EngineConfig] = None,
    correlation_id: Optional[str] = None
) -> RepaymentApplication:
    """
    Post one payment against a salary advance.

    A non-positive payment changes nothing. Otherwise the new cumulative
    repaid amount is allocated across the schedule and the advance status
    is recomputed:
        repaid >= advance - tolerance            → REPAID (no next due date)
        status in APPROVED/DISBURSED/IN_REPAYMENT → IN_REPAYMENT
        otherwise                                → status unchanged

    Returns:
        RepaymentApplication(repaid_amount, allocation, status, changed)
    """
    config = resolve_config(config)
    status = SalaryAdvanceStatus.parse(current_status)
    previous_repaid = round_currency(repaid_amount, correlation_id)
    payment = round_currency(payment_amount, correlation_id)

    if payment <= 0:
        return RepaymentApplication(
            repaid_amount=previous_repaid,
            allocation=update_repayment_statuses(
                schedule, previous_repaid, config, correlation_id
            ),
            status=status,
            changed=False,
        )

    new_repaid = round_currency(previous_repaid + payment)
    allocation = update_repayment_statuses(schedule, new_repaid, config, correlation_id)

    if new_repaid >= round_currency(advance_amount) - config.amount_tolerance:
        new_status = SalaryAdvanceStatus.REPAID
        allocation = RepaymentAllocation(schedule=allocation.schedule, next_due_date=None)
    elif status in REPAYABLE_STATUSES:
        new_status = SalaryAdvanceStatus.IN_REPAYMENT
    else:
        new_status = status

    logger.info(
        f"[BILL-REP] Repayment applied | payment={payment} | "
        f"repaid={previous_repaid}->{new_repaid} | "
        f"status={status.value if status else None}->"
        f"{new_status.value if new_status else None} | "
        f"next_due_date={allocation.next_due_date} | correlation_id={correlation_id}"
    )

    return RepaymentApplication(
        repaid_amount=new_repaid,
        allocation=allocation,
        status=new_status,
        changed=True,
    )


__all__ = [
    "REPAYABLE_STATUSES",
    "generate_repayment_schedule",
    "update_repayment_statuses",
    "apply_repayment",
]
