"""
Live Ledger - Source Package

A live aggregation engine for personal and shared-group finances.
Records stay in a remote store; every view is derived from them and
kept current as they change.

DESIGN PRINCIPLES:
1. Views are always recomputed from raw records, never patched
2. One workspace at a time; nothing leaks across a scope switch
3. Remote failures degrade to stale data, never to a crash
4. Every significant step is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Live Ledger Team"
