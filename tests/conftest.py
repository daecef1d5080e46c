"""
Shared fixtures for the billing engine test suite.

Every test starts from default configuration: BILLING_* variables are
cleared and the configuration singleton is reset before and after.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from billing.config import EngineConfig, reset_engine_config


BILLING_ENV_VARS = [
    "BILLING_AMOUNT_TOLERANCE",
    "BILLING_DEFAULT_TAX_TYPE",
    "BILLING_TAX_DESCRIPTION_TEMPLATE",
    "BILLING_METRICS_ENABLED",
]


@pytest.fixture(autouse=True)
def clean_environment():
    """Isolate each test from the process environment."""
    original_env = {}
    for var in BILLING_ENV_VARS:
        original_env[var] = os.environ.get(var)
        if var in os.environ:
            del os.environ[var]

    reset_engine_config()

    yield

    for var, value in original_env.items():
        if value is not None:
            os.environ[var] = value
        elif var in os.environ:
            del os.environ[var]

    reset_engine_config()


@pytest.fixture
def config():
    """Default engine configuration with metrics off."""
    return EngineConfig(metrics_enabled=False)
