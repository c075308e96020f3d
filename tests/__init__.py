"""
DocDB Test Suite.

This package contains:
- unit/: Component tests (in-memory adapter, SQLite in-memory, fakes)
- integration/: Full Database tests over both adapters
"""
