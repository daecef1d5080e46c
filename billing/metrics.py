"""
============================================================================
Billing Reconciliation Engine - Prometheus Metrics
============================================================================

Input Constraints: Label values are short enum-like strings
Side Effects: Updates the Prometheus default registry

METRICS EXPOSED
---------------
- billing_invoice_normalizations_total{outcome}: invoices normalized,
  outcome=clean (no write-back) or updated (update payload produced)
- billing_installments_dropped_total{reason}: installments excluded by
  normalization, reason=invalid_due_date, non_positive_amount or
  not_a_record
- billing_repayment_allocations_total{outcome}: repayment allocations,
  outcome=settled (whole schedule paid) or open

Recording is best-effort: a metrics failure is logged and never reaches
the caller of a computation function.
============================================================================
"""

import logging
from typing import Optional

from prometheus_client import Counter

from billing.config import EngineConfig, resolve_config

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# PROMETHEUS METRICS DEFINITIONS
# ============================================================================

INVOICE_NORMALIZATIONS = Counter(
    "billing_invoice_normalizations_total",
    "Total number of invoices normalized, by write-back outcome",
    ["outcome"]
)

INSTALLMENTS_DROPPED = Counter(
    "billing_installments_dropped_total",
    "Total number of installments excluded during normalization",
    ["reason"]
)

REPAYMENT_ALLOCATIONS = Counter(
    "billing_repayment_allocations_total",
    "Total number of repayment allocations, by settlement outcome",
    ["outcome"]
)


# ============================================================================
# METRIC UPDATE FUNCTIONS
# ============================================================================

def record_invoice_normalization(
    needs_update: bool,
    config: Optional[EngineConfig] = None
) -> None:
    """
    Record one invoice normalization.

    Args:
        needs_update: Whether the reconciliation produced an update payload
        config: Engine configuration (metrics_enabled gate)
    """
    if not resolve_config(config).metrics_enabled:
        return
    try:
        outcome = "updated" if needs_update else "clean"
        INVOICE_NORMALIZATIONS.labels(outcome=outcome).inc()
    except Exception as e:
        logger.error(
            "[BILL-OBS-001] Failed to record invoice_normalization metric | error=%s",
            str(e)
        )


def record_installment_dropped(
    reason: str,
    config: Optional[EngineConfig] = None
) -> None:
    """
    Record an installment excluded by normalization.

    Args:
        reason: One of installment_normalizer.DropReason
        config: Engine configuration (metrics_enabled gate)
    """
    if not resolve_config(config).metrics_enabled:
        return
    try:
        INSTALLMENTS_DROPPED.labels(reason=reason).inc()
    except Exception as e:
        logger.error(
            "[BILL-OBS-002] Failed to record installment_dropped metric | error=%s",
            str(e)
        )


def record_repayment_allocation(
    settled: bool,
    config: Optional[EngineConfig] = None
) -> None:
    """
    Record one repayment allocation pass.

    Args:
        settled: Whether every schedule entry ended up PAID
        config: Engine configuration (metrics_enabled gate)
    """
    if not resolve_config(config).metrics_enabled:
        return
    try:
        outcome = "settled" if settled else "open"
        REPAYMENT_ALLOCATIONS.labels(outcome=outcome).inc()
    except Exception as e:
        logger.error(
            "[BILL-OBS-003] Failed to record repayment_allocation metric | error=%s",
            str(e)
        )
