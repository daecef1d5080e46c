"""
============================================================================
Installment Normalizer - Invoice Installment Sanitization
============================================================================

Decimal Integrity: amount and paid_amount quantized to 0.01
Traceability: Dropped installments logged with BILL-INST-001

Sanitizes a caller-supplied installment list before status derivation:

    1. Drop entries whose due date cannot be parsed (silent, logged)
    2. Drop entries whose amount is not positive (silent, logged)
    3. sequence = caller value when it is a finite number, else the
       1-based position among surviving entries
    4. status parsed case-insensitively, SCHEDULED when unrecognized
    5. paid_amount clamped to >= 0
    6. Sort ascending by sequence (stable)

Dates: datetime and date values, and ISO-8601 strings (including the
"Z" suffix), are accepted. Other date strings ("March 1, 2025") are
accepted only when they name a full year, month and day. Naive values
are interpreted as UTC.
============================================================================
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Any, List, Union
import logging
import math

from dateutil import parser as date_parser

from billing.config import EngineConfig, resolve_config
from billing.errors import BillingErrorCode
from billing.metrics import record_installment_dropped
from billing.money import round_currency
from billing.records import read_field, as_list, as_metadata, is_record
from billing.schemas import InstallmentStatus, NormalizedInstallmentInput

# Configure module logger
logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

_FILL_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))


class DropReason:
    """Label values for dropped installments."""
    INVALID_DUE_DATE = "invalid_due_date"
    NON_POSITIVE_AMOUNT = "non_positive_amount"
    NOT_A_RECORD = "not_a_record"


def coerce_date(value: Any) -> Optional[datetime]:
    """
    Coerce a raw due date into a timezone-aware datetime.

    Returns:
        datetime in UTC when naive input, original tz otherwise; None when
        the value is empty or cannot be parsed
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = date_parser.isoparse(text)
        except (ValueError, OverflowError):
            parsed = _parse_full_date(text)
            if parsed is None:
                return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_full_date(text: str) -> Optional[datetime]:
    # Parsing against two different defaults exposes any missing year,
    # month or day: "May" or "7" would silently borrow it otherwise
    try:
        first = date_parser.parse(text, default=_FILL_DEFAULTS[0])
        second = date_parser.parse(text, default=_FILL_DEFAULTS[1])
    except (ValueError, OverflowError):
        return None
    if first.date() != second.date():
        return None
    return first


def _coerce_sequence(value: Any) -> Optional[Union[int, float]]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value) if value.is_integer() else value
    return value


def normalize_installment_inputs(
    installments: Any,
    config: Optional[EngineConfig] = None,
    correlation_id: Optional[str] = None
) -> List[NormalizedInstallmentInput]:
    """
    Sanitize a raw installment list.

    Args:
        installments: Raw installments (mappings or objects); None or any
            non-list value yields an empty list
        config: Engine configuration
        correlation_id: Audit trail identifier

    Returns:
        Surviving installments sorted by sequence
    """
    config = resolve_config(config)
    normalized: List[NormalizedInstallmentInput] = []

    for index, installment in enumerate(as_list(installments)):
        if not is_record(installment):
            _log_drop(index, DropReason.NOT_A_RECORD, config, correlation_id)
            continue

        due_date = coerce_date(read_field(installment, "dueDate", "due_date"))
        if due_date is None:
            _log_drop(index, DropReason.INVALID_DUE_DATE, config, correlation_id)
            continue

        amount = round_currency(read_field(installment, "amount"), correlation_id)
        if amount <= 0:
            _log_drop(index, DropReason.NON_POSITIVE_AMOUNT, config, correlation_id)
            continue

        status = InstallmentStatus.parse(read_field(installment, "status"))
        sequence = _coerce_sequence(read_field(installment, "sequence"))
        paid_amount = round_currency(
            read_field(installment, "paidAmount", "paid_amount"), correlation_id
        )
        installment_id = read_field(installment, "id")
        notes = read_field(installment, "notes")

        normalized.append(NormalizedInstallmentInput(
            id=str(installment_id) if installment_id is not None else None,
            sequence=sequence if sequence is not None else len(normalized) + 1,
            amount=amount,
            due_date=due_date,
            status=status if status is not None else InstallmentStatus.SCHEDULED,
            paid_amount=max(paid_amount, ZERO),
            notes=str(notes) if notes is not None else None,
            metadata=as_metadata(read_field(installment, "metadata")),
            has_manual_status=status is not None,
        ))

    normalized.sort(key=lambda entry: entry.sequence)
    return normalized


def _log_drop(
    index: int,
    reason: str,
    config: EngineConfig,
    correlation_id: Optional[str]
) -> None:
    logger.debug(
        f"[{BillingErrorCode.INSTALLMENT_DROPPED}] Installment dropped | "
        f"position={index} | reason={reason} | correlation_id={correlation_id}"
    )
    record_installment_dropped(reason, config)


__all__ = [
    "DropReason",
    "coerce_date",
    "normalize_installment_inputs",
]
