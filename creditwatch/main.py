"""
CreditWatch API entry point.

Usage:
    uvicorn creditwatch.main:app --host 0.0.0.0 --port 8080
"""

from creditwatch.api.app import create_app
from creditwatch.logging_config import configure_logging

configure_logging()

# Application instance
app = create_app()
