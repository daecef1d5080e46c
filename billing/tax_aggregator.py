"""
============================================================================
Tax Aggregator - Per-Rate Tax Breakdown
============================================================================

Decimal Integrity: Bucket totals re-rounded to 0.01 after every addition

Groups normalized invoice items into one bucket per distinct tax rate.
Buckets are keyed by the rate as an integer number of ten-thousandths
(14% -> 140000, 7.5% -> 75000), so two rates land in the same bucket
exactly when they agree to four decimal places.
============================================================================
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional
import logging

from billing.config import EngineConfig, resolve_config
from billing.money import round_currency
from billing.schemas import NormalizedInvoiceItem, NormalizedInvoiceTax

logger = logging.getLogger(__name__)


RATE_KEY_SCALE = Decimal("10000")


def rate_key(rate: Decimal) -> int:
    """Integer fixed-point key for a tax rate (rate x 10,000, half-up)."""
    return int((rate * RATE_KEY_SCALE).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def rates_match(left: Decimal, right: Decimal) -> bool:
    """True when two rates fall into the same breakdown bucket."""
    return rate_key(left) == rate_key(right)


def build_tax_breakdown(
    items: Iterable[NormalizedInvoiceItem],
    config: Optional[EngineConfig] = None
) -> List[NormalizedInvoiceTax]:
    """
    Build the per-rate tax breakdown for a set of normalized items.

    Items with a non-positive rate or non-positive tax amount are skipped.
    Buckets are returned in order of first appearance.

    Args:
        items: Normalized invoice items
        config: Engine configuration (tax type and description template)

    Returns:
        One NormalizedInvoiceTax per distinct rate
    """
    config = resolve_config(config)
    buckets: Dict[int, NormalizedInvoiceTax] = {}

    for item in items:
        if item.tax_rate <= 0 or item.tax_amount <= 0:
            continue

        key = rate_key(item.tax_rate)
        existing = buckets.get(key)

        if existing is None:
            buckets[key] = NormalizedInvoiceTax(
                tax_type=config.default_tax_type,
                rate=item.tax_rate,
                tax_amount=round_currency(item.tax_amount),
                description=config.describe_rate(item.tax_rate),
            )
        else:
            buckets[key] = NormalizedInvoiceTax(
                tax_type=existing.tax_type,
                rate=existing.rate,
                tax_amount=round_currency(existing.tax_amount + item.tax_amount),
                description=existing.description,
            )

    breakdown = list(buckets.values())

    logger.debug(
        f"[BILL-TAX] Breakdown built | buckets={len(breakdown)} | "
        f"rates={[str(tax.rate) for tax in breakdown]}"
    )

    return breakdown


__all__ = [
    "RATE_KEY_SCALE",
    "rate_key",
    "rates_match",
    "build_tax_breakdown",
]
