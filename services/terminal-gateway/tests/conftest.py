"""Shared test configuration for terminal-gateway tests.

Sets required environment variables before any terminal_gateway module that
builds settings at import time gets imported.
"""

import os

os.environ.setdefault("SERVICE_TOKEN", "test-token")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
