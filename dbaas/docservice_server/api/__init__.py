"""
API module for DocService server.

This module provides the external interface:
- HTTP server (aiohttp REST API)

Invariants:
    - Writes are acknowledged only after the atomic batch was applied
    - Handlers translate DocService errors to HTTP statuses and nothing else

How to change safely:
    - Add new routes, don't change existing response shapes
"""

from .http_server import create_http_app, start_http_site

__all__ = [
    "create_http_app",
    "start_http_site",
]
