"""
Scheduling and change detection.

This package contains:
- Content fingerprinting and diffing
- The per-target change detector
- Paced crawl runs
- Alerting and digest reports
- Service wiring and the cron trigger
"""
