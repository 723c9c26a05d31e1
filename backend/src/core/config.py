"""
Application configuration.

Settings come from environment variables; a ``.env`` file (backend/.env or
the working directory) is loaded with python-dotenv except under pytest,
so test runs only see what the test suite sets.
"""

import os
import pathlib
import sys
from decimal import Decimal
from dotenv import load_dotenv


is_testing = os.getenv("PYTEST_VERSION") is not None or "pytest" in sys.modules

if not is_testing:
    for env_path in (
        pathlib.Path(__file__).resolve().parents[2] / ".env",  # backend/.env
        pathlib.Path.cwd() / ".env",
    ):
        if env_path.exists():
            load_dotenv(env_path)
            break


# Defaults below are documented in backend/.env.example
def get_database_url():
    """Get the database URL from environment."""
    return os.getenv(
        "DATABASE_URL",
        "postgresql://localhost/clinic_queue_dev"
    )

DATABASE_URL = get_database_url()
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Authentication (tokens are issued by the auth collaborator, verified here)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "60"))
SYSTEM_ADMIN_EMAILS = [email.strip() for email in os.getenv("SYSTEM_ADMIN_EMAILS", "").split(",") if email.strip()]

# Billing
# Fee refunded when an appointment was booked without a consultation fee
DEFAULT_CONSULTATION_FEE = Decimal(os.getenv("DEFAULT_CONSULTATION_FEE", "21.00"))
# Opening balance credited when a patient's wallet is created
WALLET_INITIAL_BALANCE = Decimal(os.getenv("WALLET_INITIAL_BALANCE", "0.00"))

# Bounded retries for lock contention on token allocation and status changes
MAX_CONCURRENCY_RETRIES = int(os.getenv("MAX_CONCURRENCY_RETRIES", "3"))

# Clinic local time, used for "today" in queue progress (default IST, UTC+5:30)
CLINIC_UTC_OFFSET_MINUTES = int(os.getenv("CLINIC_UTC_OFFSET_MINUTES", "330"))
