"""
============================================================================
Billing Schemas - Normalized Invoice, Installment and Repayment Types
============================================================================

Decimal Integrity: All amounts are decimal.Decimal quantized to 0.01

Every structure in this module is a transient computation result. It is
rebuilt on each call from caller-supplied raw records and carries no
identity beyond an optional passthrough id.

to_dict() on each dataclass emits the camelCase keys used by the
persisted records, so results can be written back without a mapping layer.
============================================================================
"""

from decimal import Decimal
from typing import Optional, Dict, Any, List, Union
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime


# =============================================================================
# Enums
# =============================================================================

class TaxType(Enum):
    """Tax classification carried on invoice tax records."""
    VAT = "VAT"
    WITHHOLDING = "WITHHOLDING"
    SALES = "SALES"
    OTHER = "OTHER"

    @classmethod
    def parse_or_default(cls, value: Any, default: "TaxType" = None) -> "TaxType":
        if default is None:
            default = cls.VAT
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            token = value.strip().upper()
            if token in cls.__members__:
                return cls[token]
        return default


class InstallmentStatus(Enum):
    """
    Invoice installment lifecycle states.

    Derivation (see billing.installment_state_machine):
        SCHEDULED / PENDING → PARTIALLY_PAID → PAID
        SCHEDULED / PENDING → OVERDUE (due date passed, nothing paid)
        any → CANCELLED (manual only)

    Terminal State: CANCELLED
    """
    SCHEDULED = "SCHEDULED"
    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, value: Any) -> Optional["InstallmentStatus"]:
        """
        Case-insensitive lookup of a status token.

        Returns:
            The matching member, or None when the token is not recognized
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        token = value.strip().upper()
        if token in cls.__members__:
            return cls[token]
        return None

    @classmethod
    def parse_or_default(
        cls,
        value: Any,
        default: "InstallmentStatus" = None
    ) -> "InstallmentStatus":
        """Parse a status token, falling back to SCHEDULED."""
        parsed = cls.parse(value)
        if parsed is not None:
            return parsed
        return default if default is not None else cls.SCHEDULED


class RepaymentStatus(Enum):
    """Repayment schedule entries are either settled or not."""
    PENDING = "PENDING"
    PAID = "PAID"

    @classmethod
    def parse_or_default(cls, value: Any) -> "RepaymentStatus":
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.strip().upper() == "PAID":
            return cls.PAID
        return cls.PENDING


class SalaryAdvanceStatus(Enum):
    """Lifecycle of a salary advance repaid through a repayment schedule."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    DISBURSED = "DISBURSED"
    IN_REPAYMENT = "IN_REPAYMENT"
    REPAID = "REPAID"

    @classmethod
    def parse(cls, value: Any) -> Optional["SalaryAdvanceStatus"]:
        if isinstance(value, cls):
            return value
        if isinstance(value, str) and value.strip().upper() in cls.__members__:
            return cls[value.strip().upper()]
        return None


# =============================================================================
# Invoice Types
# =============================================================================

@dataclass(frozen=True)
class NormalizedInvoiceItem:
    """A single invoice line with every amount rounded to 2dp."""
    description: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "totalPrice": self.total_price,
            "taxRate": self.tax_rate,
            "taxAmount": self.tax_amount,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class NormalizedInvoiceTax:
    """One tax bucket: all items sharing a single rate."""
    tax_type: TaxType
    rate: Decimal
    tax_amount: Decimal
    description: str
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "taxType": self.tax_type.value,
            "rate": self.rate,
            "taxAmount": self.tax_amount,
            "description": self.description,
        }


@dataclass(frozen=True)
class NormalizedInvoiceTotals:
    """Aggregate totals computed from line items alone."""
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    breakdown: List[NormalizedInvoiceTax] = field(default_factory=list)

    @property
    def breakdown_total(self) -> Decimal:
        return sum((tax.tax_amount for tax in self.breakdown), Decimal("0.00"))


@dataclass(frozen=True)
class NormalizedInvoiceRecord:
    """
    Reconciled invoice.

    needs_normalization is True when the stored scalar fields (or the
    stored tax records) disagree with the reconciled values by more than
    the amount tolerance.
    """
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    outstanding: Decimal
    items: List[NormalizedInvoiceItem]
    taxes: List[NormalizedInvoiceTax]
    needs_normalization: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subtotal": self.subtotal,
            "taxAmount": self.tax_amount,
            "totalAmount": self.total_amount,
            "paidAmount": self.paid_amount,
            "outstanding": self.outstanding,
            "items": [item.to_dict() for item in self.items],
            "taxes": [tax.to_dict() for tax in self.taxes],
            "needsNormalization": self.needs_normalization,
        }


@dataclass(frozen=True)
class InvoiceUpdatePayload:
    """Minimal write surface for a drifted invoice."""
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subtotal": self.subtotal,
            "taxAmount": self.tax_amount,
            "totalAmount": self.total_amount,
        }


@dataclass(frozen=True)
class InvoiceNormalizationResult:
    normalized: NormalizedInvoiceRecord
    update_payload: Optional[InvoiceUpdatePayload]


@dataclass(frozen=True)
class InvoiceCollectionSummary:
    total_amount: Decimal
    total_paid: Decimal
    outstanding: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalAmount": self.total_amount,
            "totalPaid": self.total_paid,
            "outstanding": self.outstanding,
        }


# =============================================================================
# Installment Types
# =============================================================================

@dataclass(frozen=True)
class NormalizedInstallmentInput:
    """
    Sanitized invoice installment.

    has_manual_status records whether the caller supplied a recognized
    status token (as opposed to the SCHEDULED fallback).
    """
    sequence: Union[int, float]
    amount: Decimal
    due_date: datetime
    status: InstallmentStatus
    paid_amount: Decimal
    has_manual_status: bool
    id: Optional[str] = None
    notes: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sequence": self.sequence,
            "amount": self.amount,
            "dueDate": self.due_date.isoformat(),
            "status": self.status.value,
            "paidAmount": self.paid_amount,
            "notes": self.notes,
            "metadata": self.metadata,
            "hasManualStatus": self.has_manual_status,
        }


@dataclass(frozen=True)
class InstallmentTotals:
    scheduled: Decimal
    paid: Decimal

    @property
    def outstanding(self) -> Decimal:
        return max(self.scheduled - self.paid, Decimal("0.00"))


# =============================================================================
# Repayment Types
# =============================================================================

@dataclass(frozen=True)
class RepaymentScheduleEntry:
    """One monthly obligation. due_date is None only for unreadable persisted entries."""
    due_date: Optional[datetime]
    amount: Decimal
    status: RepaymentStatus = RepaymentStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "amount": self.amount,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class RepaymentAllocation:
    """Schedule with statuses re-derived from a cumulative repaid amount."""
    schedule: List[RepaymentScheduleEntry]
    next_due_date: Optional[datetime]

    @property
    def is_settled(self) -> bool:
        return all(entry.status is RepaymentStatus.PAID for entry in self.schedule)


@dataclass(frozen=True)
class RepaymentApplication:
    """Outcome of posting one payment against a salary advance."""
    repaid_amount: Decimal
    allocation: RepaymentAllocation
    status: Optional[SalaryAdvanceStatus]
    changed: bool


__all__ = [
    "TaxType",
    "InstallmentStatus",
    "RepaymentStatus",
    "SalaryAdvanceStatus",
    "NormalizedInvoiceItem",
    "NormalizedInvoiceTax",
    "NormalizedInvoiceTotals",
    "NormalizedInvoiceRecord",
    "InvoiceUpdatePayload",
    "InvoiceNormalizationResult",
    "InvoiceCollectionSummary",
    "NormalizedInstallmentInput",
    "InstallmentTotals",
    "RepaymentScheduleEntry",
    "RepaymentAllocation",
    "RepaymentApplication",
]
