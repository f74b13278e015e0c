"""
Page retrieval, normalization and persistence.

This package contains:
- Data models for targets, snapshots and change records
- The HTTP fetcher and text normalizer
- The MongoDB store
"""
