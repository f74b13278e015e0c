#!/usr/bin/env python3
"""
Serve the trigger API with uvicorn.

Usage:
    python run_api.py            # host/port from API settings
    python run_api.py --reload   # auto-reload on code changes
"""

import sys
from pathlib import Path

import uvicorn

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from api.config import config


def main():
    """Run the API server."""
    reload = config.debug or "--reload" in sys.argv[1:]

    if not config.crawl_secret:
        print("⚠️  CRAWL_SECRET is not set: /crawl and /annotate will reject every request")
    print(f"🚀 {config.api_title} v{config.api_version} on http://{config.host}:{config.port}")

    uvicorn.run(
        "api.main:app",
        host=config.host,
        port=config.port,
        reload=reload,
        log_level=config.log_level.lower(),
        access_log=True
    )


if __name__ == "__main__":
    main()
