"""
Unit tests for configuration constants.
"""

import os
from decimal import Decimal
from importlib import reload

from core.config import (
    CLINIC_UTC_OFFSET_MINUTES, DATABASE_URL, DEFAULT_CONSULTATION_FEE, FRONTEND_URL,
    MAX_CONCURRENCY_RETRIES, SYSTEM_ADMIN_EMAILS, WALLET_INITIAL_BALANCE
)


class TestConfigConstants:
    """Test cases for configuration constants."""

    def test_default_values(self):
        """Test default configuration values."""
        assert FRONTEND_URL == "http://localhost:5173"
        assert DEFAULT_CONSULTATION_FEE == Decimal("21.00")
        assert WALLET_INITIAL_BALANCE == Decimal("0.00")
        assert MAX_CONCURRENCY_RETRIES == 3
        assert CLINIC_UTC_OFFSET_MINUTES == 330
        # DATABASE_URL is overridden by the test environment
        assert DATABASE_URL.startswith(("postgresql://", "sqlite://"))

    def test_types(self):
        assert isinstance(DEFAULT_CONSULTATION_FEE, Decimal)
        assert isinstance(WALLET_INITIAL_BALANCE, Decimal)
        assert isinstance(MAX_CONCURRENCY_RETRIES, int)
        assert isinstance(SYSTEM_ADMIN_EMAILS, list)

    def test_environment_override(self):
        """Test that environment variables override defaults."""
        import core.config

        saved = {key: os.environ.get(key) for key in (
            "DEFAULT_CONSULTATION_FEE", "SYSTEM_ADMIN_EMAILS", "MAX_CONCURRENCY_RETRIES"
        )}
        os.environ["DEFAULT_CONSULTATION_FEE"] = "50.00"
        os.environ["SYSTEM_ADMIN_EMAILS"] = "a@example.com, b@example.com,"
        os.environ["MAX_CONCURRENCY_RETRIES"] = "5"

        try:
            reload(core.config)

            assert core.config.DEFAULT_CONSULTATION_FEE == Decimal("50.00")
            assert core.config.SYSTEM_ADMIN_EMAILS == ["a@example.com", "b@example.com"]
            assert core.config.MAX_CONCURRENCY_RETRIES == 5
        finally:
            for key, value in saved.items():
                if value is None:
                    os.environ.pop(key, None)
                else:
                    os.environ[key] = value
            reload(core.config)
