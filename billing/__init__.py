"""
============================================================================
Billing Reconciliation Engine
============================================================================

Decimal Integrity: All amounts use decimal.Decimal quantized to 0.01
Traceability: Public operations accept an optional correlation_id

Pure, stateless functions for:
    1. Invoice normalization - line items to rounded totals and a
       per-rate tax breakdown
    2. Invoice reconciliation - computed totals vs. persisted fields,
       with a minimal write-back payload when they drift
    3. Installment lifecycle - sanitization and status derivation
    4. Repayment schedules - remainder-correct generation and greedy
       allocation of repaid amounts

Nothing here performs I/O. Callers fetch raw records, call the engine and
persist whatever payload comes back.
============================================================================
"""

from billing.config import (
    EngineConfig,
    get_engine_config,
    reset_engine_config,
)
from billing.errors import (
    BillingError,
    BillingErrorCode,
    EngineConfigurationError,
)
from billing.schemas import (
    TaxType,
    InstallmentStatus,
    RepaymentStatus,
    SalaryAdvanceStatus,
    NormalizedInvoiceItem,
    NormalizedInvoiceTax,
    NormalizedInvoiceTotals,
    NormalizedInvoiceRecord,
    InvoiceUpdatePayload,
    InvoiceNormalizationResult,
    InvoiceCollectionSummary,
    NormalizedInstallmentInput,
    InstallmentTotals,
    RepaymentScheduleEntry,
    RepaymentAllocation,
    RepaymentApplication,
)
from billing.money import (
    sanitize_number,
    round_currency,
    amounts_match,
)
from billing.tax_aggregator import build_tax_breakdown
from billing.invoice_normalizer import (
    normalize_invoice_items,
    normalize_invoice_record,
    apply_invoice_normalization,
    sum_invoices,
)
from billing.installment_normalizer import (
    coerce_date,
    normalize_installment_inputs,
)
from billing.installment_state_machine import (
    derive_installment_status,
    clamp_installment_status,
    refresh_installment_statuses,
    calculate_installment_totals,
    is_terminal_status,
)
from billing.repayment import (
    generate_repayment_schedule,
    update_repayment_statuses,
    apply_repayment,
)

__all__ = [
    # Configuration
    "EngineConfig",
    "get_engine_config",
    "reset_engine_config",
    # Errors
    "BillingError",
    "BillingErrorCode",
    "EngineConfigurationError",
    # Schemas
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
    # Money
    "sanitize_number",
    "round_currency",
    "amounts_match",
    # Invoices
    "build_tax_breakdown",
    "normalize_invoice_items",
    "normalize_invoice_record",
    "apply_invoice_normalization",
    "sum_invoices",
    # Installments
    "coerce_date",
    "normalize_installment_inputs",
    "derive_installment_status",
    "clamp_installment_status",
    "refresh_installment_statuses",
    "calculate_installment_totals",
    "is_terminal_status",
    # Repayments
    "generate_repayment_schedule",
    "update_repayment_statuses",
    "apply_repayment",
]
