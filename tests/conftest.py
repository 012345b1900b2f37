"""Pytest bootstrap configuration.

Ensure environment variables are set before test collection and module
imports that depend on application settings.
"""
import os

# Settings are read at import time; keep tests off real databases and brokers
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///./.pytest-payments.db")
os.environ.setdefault("PAYMENT__FULFILLMENT__GRANT_BACKOFF", "0")
