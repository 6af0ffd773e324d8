import os

os.environ.setdefault("FINANCE_DATABASE_URL", "sqlite://")
os.environ.setdefault("FINANCE_READ_RETRY_BACKOFF_SECS", "0")
