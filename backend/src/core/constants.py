"""Application constants and configuration values."""

from core.config import FRONTEND_URL

# Database field lengths
MAX_STRING_LENGTH = 255
MAX_NOTES_LENGTH = 500  # Status notes, cancel reasons, transaction descriptions

# Money columns: Numeric(MONEY_PRECISION, MONEY_SCALE)
MONEY_PRECISION = 10
MONEY_SCALE = 2

# Database connection settings
DB_POOL_RECYCLE_SECONDS = 300  # 5 minutes
SQLITE_BUSY_TIMEOUT_SECONDS = 30  # How long a SQLite writer waits for the database lock

# CORS origins for development and production
_CORS_ORIGINS_RAW = [
    "http://localhost:5173",      # React dev server (Vite) - localhost
    FRONTEND_URL,  # Production URL if FRONTEND_URL is set accordingly
]

# Filter out None values and empty strings to avoid CORS errors
CORS_ORIGINS = [origin for origin in _CORS_ORIGINS_RAW if origin and origin.strip()]

# Wallet history paging
DEFAULT_TRANSACTION_PAGE_SIZE = 50
MAX_TRANSACTION_PAGE_SIZE = 200
WALLET_SUMMARY_RECENT_TRANSACTIONS = 10

# Delay between lock-contention retries (seconds), multiplied by the attempt number
CONCURRENCY_RETRY_BACKOFF_SECONDS = 0.05
