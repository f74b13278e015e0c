"""
FastAPI trigger interface for the page monitor.

This module provides:
- Crawl and annotation triggers
- Crawl status
- Bearer-credential authorization
"""
