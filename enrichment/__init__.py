"""
AI enrichment of detected changes.

This package contains:
- Gemini text-generation client
- Tolerant response parsing
- Change annotator with deterministic fallback
"""
