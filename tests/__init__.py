"""
Workspace Store Test Suite.

This package contains:
- unit/: Unit tests (one component against a temporary SQLite file)
- integration/: Integration tests (store, services, workspace folders, CLI)
"""
