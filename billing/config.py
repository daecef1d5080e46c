"""
============================================================================
Billing Reconciliation Engine - Configuration
============================================================================

Decimal Integrity: Tolerance is decimal.Decimal quantized to 0.0001

This module provides configuration management for the engine:
- Environment variable parsing with type safety
- Default values for every setting (the engine runs with no env at all)
- Validation that rejects a negative tolerance or a broken description
  template (BILL-CFG-001)

ENVIRONMENT VARIABLES:
    - BILLING_AMOUNT_TOLERANCE: Monetary equality threshold (default: 0.01)
    - BILLING_DEFAULT_TAX_TYPE: Tax type for synthesized buckets (default: VAT)
    - BILLING_TAX_DESCRIPTION_TEMPLATE: Must contain "{rate}"
      (default: "Tax at rate {rate}%")
    - BILLING_METRICS_ENABLED: Record Prometheus counters (default: true)
============================================================================
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Dict
from dataclasses import dataclass, field, replace
import logging
import os

from dotenv import load_dotenv

from billing.errors import BillingErrorCode, EngineConfigurationError
from billing.schemas import TaxType

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

PRECISION_TOLERANCE = Decimal("0.0001")


# =============================================================================
# Default Values
# =============================================================================

# Default: one minor currency unit absorbs floating-point drift
DEFAULT_AMOUNT_TOLERANCE = Decimal("0.01")

DEFAULT_TAX_TYPE = TaxType.VAT

DEFAULT_TAX_DESCRIPTION_TEMPLATE = "Tax at rate {rate}%"

DEFAULT_METRICS_ENABLED = True


# =============================================================================
# EngineConfig Class
# =============================================================================

@dataclass
class EngineConfig:
    """
    Billing engine configuration.

    ============================================================================
    CONFIGURATION PARAMETERS:
    ============================================================================
    - amount_tolerance: Absolute difference below which two amounts are
      treated as equal (default: 0.01)
    - default_tax_type: TaxType given to synthesized tax buckets (default: VAT)
    - tax_description_template: Description for synthesized tax buckets,
      formatted with rate=<rate> (default: "Tax at rate {rate}%")
    - metrics_enabled: Whether Prometheus counters are recorded (default: True)
    ============================================================================
    """

    amount_tolerance: Decimal = field(default_factory=lambda: DEFAULT_AMOUNT_TOLERANCE)

    default_tax_type: TaxType = DEFAULT_TAX_TYPE

    tax_description_template: str = DEFAULT_TAX_DESCRIPTION_TEMPLATE

    metrics_enabled: bool = DEFAULT_METRICS_ENABLED

    def __post_init__(self) -> None:
        """Ensure amount_tolerance is a quantized Decimal."""
        if not isinstance(self.amount_tolerance, Decimal):
            self.amount_tolerance = Decimal(str(self.amount_tolerance))

        self.amount_tolerance = self.amount_tolerance.quantize(
            PRECISION_TOLERANCE, rounding=ROUND_HALF_UP
        )

    def describe_rate(self, rate: Decimal) -> str:
        """Synthesized description for a tax bucket at the given rate."""
        return self.tax_description_template.format(rate=_format_rate(rate))

    def validate(self) -> None:
        """
        Validate configuration.

        Raises:
            EngineConfigurationError: If any setting is unusable (BILL-CFG-001)
        """
        errors = self._validation_errors()

        if errors:
            error_msg = "Billing configuration validation failed: " + "; ".join(errors.values())
            logger.error(f"[{BillingErrorCode.CONFIG_INVALID}] {error_msg}")
            raise EngineConfigurationError(error_msg)

        logger.info(
            f"[BILL-CONFIG] Configuration validated | "
            f"amount_tolerance={self.amount_tolerance} | "
            f"default_tax_type={self.default_tax_type.value} | "
            f"metrics_enabled={self.metrics_enabled}"
        )

    def repaired(self) -> "EngineConfig":
        """
        Copy of this configuration with every invalid setting replaced by
        its default. Logs BILL-CFG-001 instead of raising.
        """
        errors = self._validation_errors()
        if not errors:
            return self

        logger.error(
            f"[{BillingErrorCode.CONFIG_INVALID}] Invalid settings replaced by defaults | "
            + "; ".join(errors.values())
        )

        changes = {}
        if "amount_tolerance" in errors:
            changes["amount_tolerance"] = DEFAULT_AMOUNT_TOLERANCE
        if "tax_description_template" in errors:
            changes["tax_description_template"] = DEFAULT_TAX_DESCRIPTION_TEMPLATE
        return replace(self, **changes)

    def _validation_errors(self) -> Dict[str, str]:
        errors: Dict[str, str] = {}

        if self.amount_tolerance < Decimal("0"):
            errors["amount_tolerance"] = (
                f"BILLING_AMOUNT_TOLERANCE must be non-negative, got: {self.amount_tolerance}"
            )

        if "{rate}" not in self.tax_description_template:
            errors["tax_description_template"] = (
                "BILLING_TAX_DESCRIPTION_TEMPLATE must contain the {rate} placeholder, "
                f"got: {self.tax_description_template!r}"
            )
        else:
            try:
                self.tax_description_template.format(rate="0")
            except (KeyError, IndexError, ValueError) as e:
                errors["tax_description_template"] = (
                    f"BILLING_TAX_DESCRIPTION_TEMPLATE is not a valid format string: {e}"
                )

        return errors

    @classmethod
    def from_environment(cls, validate: bool = True) -> "EngineConfig":
        """
        Load configuration from environment variables.

        Malformed values log a warning and fall back to the default.

        Args:
            validate: Whether to validate configuration after loading (default: True)

        Raises:
            EngineConfigurationError: If validation is requested and fails
        """
        tolerance_str = os.environ.get(
            "BILLING_AMOUNT_TOLERANCE", str(DEFAULT_AMOUNT_TOLERANCE)
        )
        try:
            amount_tolerance = Decimal(tolerance_str.strip())
            if not amount_tolerance.is_finite():
                raise InvalidOperation(tolerance_str)
        except (InvalidOperation, ValueError):
            logger.warning(
                f"[BILL-CONFIG] Invalid BILLING_AMOUNT_TOLERANCE value: {tolerance_str}, "
                f"using default: {DEFAULT_AMOUNT_TOLERANCE}"
            )
            amount_tolerance = DEFAULT_AMOUNT_TOLERANCE

        tax_type_str = os.environ.get("BILLING_DEFAULT_TAX_TYPE", DEFAULT_TAX_TYPE.value)
        default_tax_type = TaxType.parse_or_default(tax_type_str, DEFAULT_TAX_TYPE)
        if default_tax_type.value != tax_type_str.strip().upper():
            logger.warning(
                f"[BILL-CONFIG] Invalid BILLING_DEFAULT_TAX_TYPE value: {tax_type_str}, "
                f"using default: {DEFAULT_TAX_TYPE.value}"
            )

        template = os.environ.get(
            "BILLING_TAX_DESCRIPTION_TEMPLATE", DEFAULT_TAX_DESCRIPTION_TEMPLATE
        )

        metrics_str = os.environ.get("BILLING_METRICS_ENABLED", "true").lower().strip()
        metrics_enabled = metrics_str in ("true", "1", "yes", "on")

        logger.info(
            f"[BILL-CONFIG] Loading configuration from environment | "
            f"BILLING_AMOUNT_TOLERANCE={amount_tolerance} | "
            f"BILLING_DEFAULT_TAX_TYPE={default_tax_type.value} | "
            f"BILLING_METRICS_ENABLED={metrics_enabled}"
        )

        config = cls(
            amount_tolerance=amount_tolerance,
            default_tax_type=default_tax_type,
            tax_description_template=template,
            metrics_enabled=metrics_enabled,
        )

        if validate:
            config.validate()

        return config

    def to_dict(self) -> dict:
        return {
            "amount_tolerance": str(self.amount_tolerance),
            "default_tax_type": self.default_tax_type.value,
            "tax_description_template": self.tax_description_template,
            "metrics_enabled": self.metrics_enabled,
        }


def _format_rate(rate: Decimal) -> str:
    # 14.00 -> "14", 7.50 -> "7.5"
    text = format(rate.normalize(), "f")
    return text if text else "0"


# =============================================================================
# Module-Level Configuration Instance
# =============================================================================

# Global configuration instance (lazy-loaded)
_config_instance: Optional[EngineConfig] = None


def get_engine_config(validate: bool = True) -> EngineConfig:
    """
    Get the global engine configuration instance.

    Loads a .env file (if present) and the environment on first access.
    With validate=False invalid settings are replaced by their defaults.

    Raises:
        EngineConfigurationError: If validate is True and the environment
            holds an invalid setting
    """
    global _config_instance

    if _config_instance is None:
        load_dotenv()
        config = EngineConfig.from_environment(validate=validate)
        _config_instance = config if validate else config.repaired()

    return _config_instance


def resolve_config(config: Optional[EngineConfig]) -> EngineConfig:
    """
    Return the explicit config or fall back to the global instance.

    Used by every computation function: invalid environment settings are
    replaced by defaults here rather than raised.
    """
    return config if config is not None else get_engine_config(validate=False)


def reset_engine_config() -> None:
    """
    Reset the global configuration instance.

    Primarily for tests, so each test can load its own environment.
    """
    global _config_instance
    _config_instance = None
    logger.debug("[BILL-CONFIG] Configuration instance reset")


__all__ = [
    "EngineConfig",
    "DEFAULT_AMOUNT_TOLERANCE",
    "DEFAULT_TAX_TYPE",
    "DEFAULT_TAX_DESCRIPTION_TEMPLATE",
    "DEFAULT_METRICS_ENABLED",
    "PRECISION_TOLERANCE",
    "get_engine_config",
    "resolve_config",
    "reset_engine_config",
]
