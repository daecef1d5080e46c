"""
============================================================================
Billing Reconciliation Engine - Error Codes
============================================================================

The computation layer never raises for bad data: it coerces and logs.
These codes tag every log line that records a coercion so that audit
searches can find them. Only configuration loading raises, through
EngineConfigurationError.

ERROR CODES:
    - BILL-NUM-001: Numeric value could not be parsed, treated as zero
    - BILL-INST-001: Installment dropped (invalid due date or amount)
    - BILL-REC-001: Stored invoice totals drifted beyond tolerance
    - BILL-REP-001: Repayment schedule final entry is not positive
    - BILL-CFG-001: Engine configuration invalid
============================================================================
"""

from typing import Optional


class BillingErrorCode:
    """Billing engine error codes for audit logging."""
    NUMBER_COERCED = "BILL-NUM-001"
    INSTALLMENT_DROPPED = "BILL-INST-001"
    TOTALS_DRIFTED = "BILL-REC-001"
    NON_POSITIVE_FINAL_ENTRY = "BILL-REP-001"
    CONFIG_INVALID = "BILL-CFG-001"


class BillingError(Exception):
    """Base class for billing engine exceptions."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.error_code = error_code
        self.message = message
        if error_code:
            super().__init__(f"[{error_code}] {message}")
        else:
            super().__init__(message)


class EngineConfigurationError(BillingError):
    """
    Raised when engine configuration is invalid.

    Raised from EngineConfig.validate() only; computation functions
    never raise it.
    """

    def __init__(self, message: str, error_code: str = BillingErrorCode.CONFIG_INVALID):
        super().__init__(message, error_code)


__all__ = [
    "BillingErrorCode",
    "BillingError",
    "EngineConfigurationError",
]
