"""
DocService Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies beyond temp files)
- integration/: Integration tests (SQLite and in-memory backends, HTTP app)
- e2e/: End-to-end tests against a live Cassandra cluster
"""
