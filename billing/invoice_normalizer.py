"""
============================================================================
Invoice Normalizer - Line Item Totals and Invoice Reconciliation
============================================================================

Decimal Integrity: Every amount quantized to 0.01 (halves toward +infinity)
Traceability: correlation_id echoed in every log line

INVOICE NORMALIZER:
    Turns raw invoice line items into rounded, internally consistent items
    and totals, then reconciles those totals against the scalar fields and
    tax records already persisted on the invoice.

    The reconciler decides which values to trust:
    1. Subtotal: computed from items when positive, else the stored field
    2. Tax: the per-rate breakdown sum; falls back to the stored tax records,
       then to the stored taxAmount field
    3. Tax records: rebuilt from the per-rate breakdown when they no
       longer sum to the tax amount (ids and descriptions are kept for
       rates that already had a record)
    4. Total: the stored value is kept when it agrees with
       subtotal + tax within tolerance, otherwise the computed value wins

Key Constraints:
- Pure: nothing here reads or writes storage
- Idempotent: normalizing a normalized record changes nothing and
  reports needs_normalization=False
- Never raises on malformed input
============================================================================
"""

from decimal import Decimal
from typing import Optional, Any, List, Tuple, Iterable
import logging

from billing.config import EngineConfig, resolve_config
from billing.errors import BillingErrorCode
from billing.metrics import record_invoice_normalization
from billing.money import sanitize_number, round_currency, differs
from billing.records import read_field, as_list, as_metadata, is_record
from billing.schemas import (
    TaxType,
    NormalizedInvoiceItem,
    NormalizedInvoiceTax,
    NormalizedInvoiceTotals,
    NormalizedInvoiceRecord,
    InvoiceUpdatePayload,
    InvoiceNormalizationResult,
    InvoiceCollectionSummary,
)
from billing.tax_aggregator import build_tax_breakdown, rates_match

# Configure module logger
logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


# =============================================================================
# Line Items
# =============================================================================

def normalize_invoice_item(
    item: Any,
    correlation_id: Optional[str] = None
) -> NormalizedInvoiceItem:
    """
    Normalize a single raw line item.

    total_price falls back to quantity * unit_price when no positive
    explicit total is given; tax_amount falls back to the rounded
    total_price * tax_rate / 100 the same way.
    """
    quantity = sanitize_number(read_field(item, "quantity"), correlation_id)
    unit_price = sanitize_number(
        read_field(item, "unitPrice", "unit_price"), correlation_id
    )
    explicit_total = sanitize_number(
        read_field(item, "totalPrice", "total_price"), correlation_id
    )
    total_price = explicit_total if explicit_total > 0 else quantity * unit_price

    tax_rate = sanitize_number(read_field(item, "taxRate", "tax_rate"), correlation_id)
    explicit_tax = sanitize_number(
        read_field(item, "taxAmount", "tax_amount"), correlation_id
    )
    tax_amount = (
        explicit_tax if explicit_tax > 0
        else round_currency(total_price) * (tax_rate / HUNDRED)
    )

    item_id = read_field(item, "id")
    description = read_field(item, "description")

    return NormalizedInvoiceItem(
        id=str(item_id) if item_id is not None else None,
        description=str(description) if description is not None else "",
        quantity=round_currency(quantity),
        unit_price=round_currency(unit_price),
        total_price=round_currency(total_price),
        tax_rate=round_currency(tax_rate),
        tax_amount=round_currency(tax_amount),
        metadata=as_metadata(read_field(item, "metadata")),
    )


def normalize_invoice_items(
    items: Any,
    config: Optional[EngineConfig] = None,
    correlation_id: Optional[str] = None
) -> Tuple[List[NormalizedInvoiceItem], NormalizedInvoiceTotals]:
    """
    Normalize raw line items and compute aggregate totals.

    Args:
        items: List of raw items (mappings or objects); None is treated as empty
        config: Engine configuration
        correlation_id: Audit trail identifier

    Returns:
        (normalized items, NormalizedInvoiceTotals)
    """
    config = resolve_config(config)

    normalized = [
        normalize_invoice_item(item, correlation_id)
        for item in as_list(items)
        if is_record(item)
    ]

    subtotal = round_currency(sum((item.total_price for item in normalized), ZERO))
    tax_amount = round_currency(sum((item.tax_amount for item in normalized), ZERO))
    total_amount = round_currency(subtotal + tax_amount)

    totals = NormalizedInvoiceTotals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        total_amount=total_amount,
        breakdown=build_tax_breakdown(normalized, config),
    )

    return normalized, totals


# =============================================================================
# Invoice Reconciliation
# =============================================================================

def _existing_taxes(
    raw_taxes: Any,
    config: EngineConfig
) -> List[NormalizedInvoiceTax]:
    taxes = []
    for tax in as_list(raw_taxes):
        if not is_record(tax):
            continue
        tax_id = read_field(tax, "id")
        description = read_field(tax, "description")
        taxes.append(NormalizedInvoiceTax(
            id=str(tax_id) if tax_id is not None else None,
            tax_type=TaxType.parse_or_default(
                read_field(tax, "taxType", "tax_type"), config.default_tax_type
            ),
            rate=round_currency(read_field(tax, "rate")),
            tax_amount=round_currency(read_field(tax, "taxAmount", "tax_amount")),
            description=str(description) if description is not None else "",
        ))
    return taxes


def _rebuild_taxes(
    breakdown: Iterable[NormalizedInvoiceTax],
    existing: List[NormalizedInvoiceTax]
) -> List[NormalizedInvoiceTax]:
    rebuilt = []
    for entry in breakdown:
        match = next((tax for tax in existing if rates_match(tax.rate, entry.rate)), None)
        rebuilt.append(NormalizedInvoiceTax(
            id=match.id if match else None,
            tax_type=match.tax_type if match else entry.tax_type,
            rate=entry.rate,
            tax_amount=round_currency(entry.tax_amount),
            description=(match.description if match and match.description else entry.description),
        ))
    return rebuilt


def normalize_invoice_record(
    invoice: Any,
    config: Optional[EngineConfig] = None,
    correlation_id: Optional[str] = None
) -> NormalizedInvoiceRecord:
    """
    Reconcile an invoice's stored totals against its line items.

    ============================================================================
    RECONCILIATION PROCEDURE:
    ============================================================================
    1. Normalize line items (subtotal, tax, per-rate breakdown)
    2. Subtotal: computed if > 0, else stored
    3. Tax: breakdown sum if > 0, else stored tax records sum, else stored field
    4. Rebuild tax records from the breakdown when they drift from the tax;
       without a breakdown the stored records are returned untouched
    5. Total: stored if within tolerance of subtotal + tax, else computed
    6. Outstanding: max(total - paid, 0)
    7. needs_normalization when any stored value drifted beyond tolerance
    ============================================================================

    Args:
        invoice: Raw invoice (mapping or object) with optional subtotal,
            taxAmount, totalAmount, paidAmount, items and taxes
        config: Engine configuration (tolerance, tax defaults)
        correlation_id: Audit trail identifier

    Returns:
        NormalizedInvoiceRecord
    """
    config = resolve_config(config)
    tolerance = config.amount_tolerance

    items, totals = normalize_invoice_items(
        read_field(invoice, "items"), config, correlation_id
    )

    subtotal_from_record = round_currency(read_field(invoice, "subtotal"), correlation_id)
    tax_from_record = round_currency(
        read_field(invoice, "taxAmount", "tax_amount"), correlation_id
    )
    total_from_record = round_currency(
        read_field(invoice, "totalAmount", "total_amount"), correlation_id
    )
    paid_amount = round_currency(
        read_field(invoice, "paidAmount", "paid_amount"), correlation_id
    )

    subtotal = totals.subtotal if totals.subtotal > 0 else subtotal_from_record

    existing_taxes = _existing_taxes(read_field(invoice, "taxes"), config)
    existing_taxes_total = round_currency(
        sum((tax.tax_amount for tax in existing_taxes), ZERO)
    )

    taxes = existing_taxes
    tax_amount = round_currency(totals.breakdown_total)

    if tax_amount <= 0:
        if existing_taxes_total > 0:
            tax_amount = existing_taxes_total
        elif tax_from_record > 0:
            tax_amount = tax_from_record

    # Tax records can only be rebuilt from a breakdown, so only then are they compared
    taxes_drifted = bool(totals.breakdown) and differs(
        existing_taxes_total, tax_amount, tolerance
    )

    if taxes_drifted:
        taxes = _rebuild_taxes(totals.breakdown, existing_taxes)
        tax_amount = round_currency(sum((tax.tax_amount for tax in taxes), ZERO))

    if tax_amount <= 0:
        tax_amount = existing_taxes_total if existing_taxes_total else tax_from_record

    computed_total = round_currency(subtotal + tax_amount)
    total_amount = computed_total
    if total_from_record > 0 and not differs(total_from_record, computed_total, tolerance):
        total_amount = total_from_record

    outstanding = round_currency(max(total_amount - paid_amount, ZERO))

    needs_normalization = (
        differs(subtotal_from_record, subtotal, tolerance)
        or differs(tax_from_record, tax_amount, tolerance)
        or differs(total_from_record, total_amount, tolerance)
        or taxes_drifted
    )

    if needs_normalization:
        logger.debug(
            f"[{BillingErrorCode.TOTALS_DRIFTED}] Stored invoice totals drifted | "
            f"subtotal={subtotal_from_record}->{subtotal} | "
            f"tax={tax_from_record}->{tax_amount} | "
            f"total={total_from_record}->{total_amount} | "
            f"tax_records={existing_taxes_total} | "
            f"correlation_id={correlation_id}"
        )

    return NormalizedInvoiceRecord(
        subtotal=subtotal,
        tax_amount=tax_amount,
        total_amount=total_amount,
        paid_amount=paid_amount,
        outstanding=outstanding,
        items=items,
        taxes=taxes,
        needs_normalization=needs_normalization,
    )


def apply_invoice_normalization(
    invoice: Any,
    config: Optional[EngineConfig] = None,
    correlation_id: Optional[str] = None
) -> InvoiceNormalizationResult:
    """
    Normalize an invoice and build the minimal write-back payload.

    update_payload is None when the stored record is already consistent;
    otherwise it carries only subtotal, tax_amount and total_amount.
    """
    config = resolve_config(config)
    normalized = normalize_invoice_record(invoice, config, correlation_id)

    update_payload = None
    if normalized.needs_normalization:
        update_payload = InvoiceUpdatePayload(
            subtotal=normalized.subtotal,
            tax_amount=normalized.tax_amount,
            total_amount=normalized.total_amount,
        )
        logger.info(
            f"[BILL-NORM] Invoice requires write-back | "
            f"invoice_id={read_field(invoice, 'id')} | "
            f"total_amount={normalized.total_amount} | "
            f"outstanding={normalized.outstanding} | "
            f"correlation_id={correlation_id}"
        )

    record_invoice_normalization(update_payload is not None, config)

    return InvoiceNormalizationResult(
        normalized=normalized,
        update_payload=update_payload,
    )


def sum_invoices(
    invoices: Any,
    config: Optional[EngineConfig] = None,
    correlation_id: Optional[str] = None
) -> InvoiceCollectionSummary:
    """
    Total a collection of invoices, normalizing each one independently.

    Returns:
        InvoiceCollectionSummary(total_amount, total_paid, outstanding)
    """
    config = resolve_config(config)
    total_amount = ZERO
    total_paid = ZERO
    outstanding = ZERO

    for invoice in as_list(invoices):
        normalized = normalize_invoice_record(invoice, config, correlation_id)
        total_amount = round_currency(total_amount + normalized.total_amount)
        total_paid = round_currency(
            total_paid + normalized.total_amount - normalized.outstanding
        )
        outstanding = round_currency(outstanding + normalized.outstanding)

    return InvoiceCollectionSummary(
        total_amount=total_amount,
        total_paid=total_paid,
        outstanding=outstanding,
    )


__all__ = [
    "normalize_invoice_item",
    "normalize_invoice_items",
    "normalize_invoice_record",
    "apply_invoice_normalization",
    "sum_invoices",
]
