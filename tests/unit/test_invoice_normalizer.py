"""
============================================================================
Unit Tests - Invoice Normalizer and Reconciler
============================================================================

Tests verify:
1. Line item totals and tax derivation
2. Stored-value fallbacks (subtotal, tax records, tax field)
3. Tolerance-based reconciliation of stored totals
4. Tax record rebuilding that keeps ids and descriptions
5. Minimal write-back payload and collection totals
============================================================================
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from billing.invoice_normalizer import (
    normalize_invoice_item,
    normalize_invoice_items,
    normalize_invoice_record,
    apply_invoice_normalization,
    sum_invoices,
)
from billing.schemas import TaxType


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def taxed_items():
    return [{"description": "Brake service", "quantity": 2, "unitPrice": 100, "taxRate": 14}]


@pytest.fixture
def consistent_invoice(taxed_items):
    return {
        "id": "inv-1",
        "subtotal": 200,
        "taxAmount": 28,
        "totalAmount": 228,
        "paidAmount": 100,
        "items": taxed_items,
        "taxes": [{"id": "tax-1", "taxType": "VAT", "rate": 14, "taxAmount": 28, "description": "VAT 14%"}],
    }


# =============================================================================
# Line Items
# =============================================================================

class TestLineItems:
    """Per-item normalization and aggregate totals."""

    def test_sum_law(self, config, taxed_items) -> None:
        items, totals = normalize_invoice_items(taxed_items, config)

        assert items[0].total_price == Decimal("200")
        assert items[0].tax_amount == Decimal("28")
        assert totals.subtotal == Decimal("200")
        assert totals.tax_amount == Decimal("28")
        assert totals.total_amount == Decimal("228")

    def test_explicit_totals_win_when_positive(self) -> None:
        item = normalize_invoice_item({
            "quantity": 2, "unitPrice": 100, "totalPrice": 150,
            "taxRate": 14, "taxAmount": 10,
        })
        assert item.total_price == Decimal("150")
        assert item.tax_amount == Decimal("10")

    def test_zero_explicit_totals_fall_back_to_computation(self) -> None:
        item = normalize_invoice_item({
            "quantity": 3, "unitPrice": "10.10", "totalPrice": 0,
            "taxRate": 10, "taxAmount": "0",
        })
        assert item.total_price == Decimal("30.30")
        assert item.tax_amount == Decimal("3.03")

    def test_formatted_strings_are_parsed(self) -> None:
        item = normalize_invoice_item({
            "quantity": "3", "unitPrice": "EGP 1,000.00", "taxRate": "14%",
        })
        assert item.total_price == Decimal("3000")
        assert item.tax_amount == Decimal("420")

    def test_non_numeric_unit_price_is_zero(self) -> None:
        item = normalize_invoice_item({"quantity": 2, "unitPrice": "call us", "taxRate": 14})
        assert item.unit_price == Decimal("0")
        assert item.total_price == Decimal("0")
        assert item.tax_amount == Decimal("0")

    def test_amounts_are_rounded(self) -> None:
        item = normalize_invoice_item({"quantity": 1, "unitPrice": "19.999", "taxRate": 14})
        assert item.unit_price == Decimal("20.00")
        assert item.total_price == Decimal("20.00")
        # 19.999 * 0.14 = 2.79986
        assert item.tax_amount == Decimal("2.80")

    def test_passthrough_fields(self) -> None:
        item = normalize_invoice_item({
            "id": 7, "description": "Oil", "quantity": 1, "unitPrice": 5,
            "metadata": {"sku": "OIL-5W30"},
        })
        assert item.id == "7"
        assert item.description == "Oil"
        assert item.metadata == {"sku": "OIL-5W30"}

    def test_missing_description_and_bad_metadata(self) -> None:
        item = normalize_invoice_item({"quantity": 1, "unitPrice": 5, "metadata": "oops"})
        assert item.description == ""
        assert item.metadata is None

    @pytest.mark.parametrize("raw", [None, "items", 42, {"quantity": 1}])
    def test_non_list_items_are_empty(self, config, raw) -> None:
        items, totals = normalize_invoice_items(raw, config)
        assert items == []
        assert totals.total_amount == Decimal("0")

    def test_non_record_entries_are_skipped(self, config) -> None:
        items, totals = normalize_invoice_items(
            [None, "x", {"quantity": 1, "unitPrice": 10}], config
        )
        assert len(items) == 1
        assert totals.subtotal == Decimal("10")


# =============================================================================
# Reconciliation
# =============================================================================

class TestNormalizeInvoiceRecord:
    """Stored vs. computed totals."""

    def test_consistent_invoice_needs_nothing(self, config, consistent_invoice) -> None:
        record = normalize_invoice_record(consistent_invoice, config)

        assert record.subtotal == Decimal("200")
        assert record.tax_amount == Decimal("28")
        assert record.total_amount == Decimal("228")
        assert record.paid_amount == Decimal("100")
        assert record.outstanding == Decimal("128")
        assert record.needs_normalization is False
        assert [tax.id for tax in record.taxes] == ["tax-1"]

    def test_fresh_invoice_builds_taxes_and_flags_update(self, config, taxed_items) -> None:
        record = normalize_invoice_record({"items": taxed_items}, config)

        assert record.total_amount == Decimal("228")
        assert record.needs_normalization is True
        assert len(record.taxes) == 1
        tax = record.taxes[0]
        assert tax.id is None
        assert tax.tax_type is TaxType.VAT
        assert tax.rate == Decimal("14")
        assert tax.tax_amount == Decimal("28")
        assert tax.description == "Tax at rate 14%"

    def test_total_off_by_two_cents_uses_computed(self, config, consistent_invoice) -> None:
        consistent_invoice["totalAmount"] = "228.02"

        record = normalize_invoice_record(consistent_invoice, config)

        assert record.needs_normalization is True
        assert record.total_amount == Decimal("228.00")

    def test_total_within_tolerance_keeps_stored(self, config, consistent_invoice) -> None:
        consistent_invoice["totalAmount"] = "228.01"

        record = normalize_invoice_record(consistent_invoice, config)

        assert record.needs_normalization is False
        assert record.total_amount == Decimal("228.01")
        assert record.outstanding == Decimal("128.01")

    def test_stale_subtotal_is_replaced(self, config, consistent_invoice) -> None:
        consistent_invoice["subtotal"] = 180

        record = normalize_invoice_record(consistent_invoice, config)

        assert record.subtotal == Decimal("200")
        assert record.needs_normalization is True

    def test_subtotal_falls_back_to_stored_without_items(self, config) -> None:
        record = normalize_invoice_record({
            "subtotal": 500, "taxAmount": 70, "totalAmount": 570, "items": [], "taxes": [],
        }, config)

        assert record.subtotal == Decimal("500")
        assert record.tax_amount == Decimal("70")
        assert record.total_amount == Decimal("570")
        assert record.needs_normalization is False

    def test_tax_falls_back_to_stored_tax_records(self, config) -> None:
        record = normalize_invoice_record({
            "subtotal": 500, "totalAmount": 570,
            "taxes": [{"rate": 14, "taxAmount": 70}],
        }, config)

        assert record.tax_amount == Decimal("70")
        assert record.total_amount == Decimal("570")
        # Stored taxAmount field was missing
        assert record.needs_normalization is True

    def test_drifted_tax_records_are_rebuilt_keeping_identity(self, config, taxed_items) -> None:
        record = normalize_invoice_record({
            "subtotal": 200, "taxAmount": 28, "totalAmount": 228,
            "items": taxed_items,
            "taxes": [{"id": "t1", "taxType": "vat", "rate": "14", "taxAmount": 10, "description": "VAT"}],
        }, config)

        assert record.needs_normalization is True
        assert len(record.taxes) == 1
        assert record.taxes[0].id == "t1"
        assert record.taxes[0].description == "VAT"
        assert record.taxes[0].tax_amount == Decimal("28")
        assert record.tax_amount == Decimal("28")

    def test_unmatched_rate_gets_synthesized_description(self, config) -> None:
        record = normalize_invoice_record({
            "items": [{"quantity": 1, "unitPrice": 100, "taxRate": 5}],
            "taxes": [{"id": "t1", "rate": 14, "taxAmount": 14, "description": "VAT"}],
        }, config)

        assert len(record.taxes) == 1
        assert record.taxes[0].id is None
        assert record.taxes[0].description == "Tax at rate 5%"
        assert record.tax_amount == Decimal("5")

    def test_multiple_rates_rebuild_in_order(self, config) -> None:
        record = normalize_invoice_record({
            "items": [
                {"quantity": 1, "unitPrice": 100, "taxRate": 14},
                {"quantity": 1, "unitPrice": 200, "taxRate": 5},
                {"quantity": 1, "unitPrice": 50, "taxRate": 14},
            ],
        }, config)

        assert [tax.rate for tax in record.taxes] == [Decimal("14"), Decimal("5")]
        assert [tax.tax_amount for tax in record.taxes] == [Decimal("21"), Decimal("10")]
        assert record.tax_amount == Decimal("31")
        assert record.total_amount == Decimal("381")

    def test_overpayment_leaves_nothing_outstanding(self, config, consistent_invoice) -> None:
        consistent_invoice["paidAmount"] = 300
        record = normalize_invoice_record(consistent_invoice, config)
        assert record.outstanding == Decimal("0")

    def test_accepts_objects_with_snake_case_fields(self, config) -> None:
        invoice = SimpleNamespace(
            subtotal=Decimal("200"),
            tax_amount=Decimal("28"),
            total_amount=Decimal("228"),
            paid_amount=Decimal("0"),
            items=[SimpleNamespace(quantity=2, unit_price=100, tax_rate=14)],
            taxes=[SimpleNamespace(id="t1", tax_type="VAT", rate=14, tax_amount=28, description="VAT")],
        )

        record = normalize_invoice_record(invoice, config)

        assert record.total_amount == Decimal("228")
        assert record.outstanding == Decimal("228")
        assert record.needs_normalization is False

    def test_normalizing_output_is_stable(self, config, taxed_items) -> None:
        first = normalize_invoice_record({"items": taxed_items, "totalAmount": "999"}, config)
        second = normalize_invoice_record(first.to_dict(), config)

        assert second.needs_normalization is False
        assert second.subtotal == first.subtotal
        assert second.tax_amount == first.tax_amount
        assert second.total_amount == first.total_amount
        assert second.taxes == first.taxes

    def test_zero_sum_tax_records_without_breakdown_are_left_alone(self, config) -> None:
        invoice = {
            "items": [{"quantity": 1, "unitPrice": 100}],
            "subtotal": 100, "taxAmount": 14, "totalAmount": 114,
            "taxes": [{"rate": 14, "taxAmount": 0}],
        }

        first = normalize_invoice_record(invoice, config)
        second = normalize_invoice_record(first.to_dict(), config)

        assert first.tax_amount == Decimal("14")
        assert first.total_amount == Decimal("114")
        assert first.needs_normalization is False
        assert second.needs_normalization is False

    def test_untaxed_rate_with_explicit_tax_is_stable(self, config) -> None:
        invoice = {
            "items": [{"totalPrice": 100, "taxRate": 0, "taxAmount": 14}],
            "taxes": [{"rate": 5, "taxAmount": 3}],
        }

        first = normalize_invoice_record(invoice, config)
        second = normalize_invoice_record(first.to_dict(), config)

        # No rated item, so the tax falls back to the stored tax records
        assert first.tax_amount == Decimal("3")
        assert first.total_amount == Decimal("103")
        assert first.needs_normalization is True
        assert second.needs_normalization is False
        assert second.taxes == first.taxes

    def test_item_tax_computed_from_rounded_line_total(self) -> None:
        # 0.125 rounds to 0.13, and 0.13 * 50% rounds to 0.07 (0.0625 would give 0.06)
        item = normalize_invoice_item({"quantity": 1, "unitPrice": "0.125", "taxRate": 50})
        second = normalize_invoice_item(item.to_dict())

        assert item.total_price == Decimal("0.13")
        assert item.tax_amount == Decimal("0.07")
        assert second == item

    def test_invalid_environment_falls_back_to_defaults(self, taxed_items) -> None:
        os.environ["BILLING_TAX_DESCRIPTION_TEMPLATE"] = "Tax"
        os.environ["BILLING_AMOUNT_TOLERANCE"] = "-1"

        record = normalize_invoice_record({"items": taxed_items})

        assert record.taxes[0].description == "Tax at rate 14%"
        assert record.total_amount == Decimal("228")

    def test_empty_invoice(self, config) -> None:
        record = normalize_invoice_record({}, config)
        assert record.total_amount == Decimal("0")
        assert record.items == []
        assert record.taxes == []
        assert record.needs_normalization is False


# =============================================================================
# Write-back and Collections
# =============================================================================

class TestApplyInvoiceNormalization:
    """Minimal update payload."""

    def test_clean_invoice_has_no_payload(self, config, consistent_invoice) -> None:
        result = apply_invoice_normalization(consistent_invoice, config)
        assert result.update_payload is None
        assert result.normalized.total_amount == Decimal("228")

    def test_drifted_invoice_has_scalar_payload(self, config, consistent_invoice) -> None:
        consistent_invoice["totalAmount"] = 250

        result = apply_invoice_normalization(consistent_invoice, config)

        assert result.update_payload is not None
        assert result.update_payload.to_dict() == {
            "subtotal": Decimal("200"),
            "taxAmount": Decimal("28"),
            "totalAmount": Decimal("228"),
        }

    def test_records_metric_when_enabled(self, consistent_invoice) -> None:
        from prometheus_client import REGISTRY
        from billing.config import EngineConfig

        sample = ("billing_invoice_normalizations_total", {"outcome": "clean"})
        before = REGISTRY.get_sample_value(*sample) or 0.0

        apply_invoice_normalization(consistent_invoice, EngineConfig(metrics_enabled=True))

        assert REGISTRY.get_sample_value(*sample) == before + 1


class TestSumInvoices:
    """Collection totals fold independently normalized invoices."""

    def test_sums_totals_paid_and_outstanding(self, config, consistent_invoice) -> None:
        settled = {
            "subtotal": 500, "taxAmount": 70, "totalAmount": 570, "paidAmount": 570,
        }

        summary = sum_invoices([consistent_invoice, settled], config)

        assert summary.total_amount == Decimal("798")
        assert summary.total_paid == Decimal("670")
        assert summary.outstanding == Decimal("128")

    def test_overpaid_invoice_counts_only_its_total(self, config, consistent_invoice) -> None:
        consistent_invoice["paidAmount"] = 1000

        summary = sum_invoices([consistent_invoice], config)

        assert summary.total_paid == Decimal("228")
        assert summary.outstanding == Decimal("0")

    def test_empty_collection(self, config) -> None:
        summary = sum_invoices([], config)
        assert summary.to_dict() == {
            "totalAmount": Decimal("0"),
            "totalPaid": Decimal("0"),
            "outstanding": Decimal("0"),
        }
