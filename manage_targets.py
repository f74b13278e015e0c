#!/usr/bin/env python3
"""
Target Management Utility

This script manages monitored targets:
- Add (or update) a target
- List targets
- Deactivate / reactivate a target
- Print a change digest
"""

import asyncio
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from pydantic import ValidationError

from crawler.database import MongoMonitorStore
from crawler.exceptions import MonitorError
from crawler.models import CheckFrequency, MonitoredTarget, PageCategory
from scheduler.report_generator import DigestGenerator
from utilities.config import config
from utilities.logger import setup_logging

USAGE = """Usage: python manage_targets.py [add|list|deactivate|activate|digest] ...

Commands:
  add <url> <name> [category] [frequency]  - Add or update a target
  list                                     - List all targets
  deactivate <target_id>                   - Stop checking a target
  activate <target_id>                     - Resume checking a target
  digest [days]                            - Print a change digest

Categories: {categories}
Frequencies: {frequencies}
""".format(
    categories=", ".join(c.value for c in PageCategory),
    frequencies=", ".join(f.value for f in CheckFrequency),
)


async def add_target(store: MongoMonitorStore, args):
    """Add or update a target."""
    if len(args) < 2:
        print("❌ Error: url and name are required")
        sys.exit(1)

    try:
        target = MonitoredTarget(
            url=args[0],
            name=args[1],
            category=PageCategory(args[2]) if len(args) > 2 else PageCategory.OTHER,
            check_frequency=CheckFrequency(args[3]) if len(args) > 3 else None,
        )
    except (ValueError, ValidationError) as e:
        print(f"❌ Invalid target: {e}")
        sys.exit(1)

    stored = await store.upsert_target(target)
    print(f"✅ Target saved: {stored.id}")
    print(f"   URL: {stored.url}")
    print(f"   Name: {stored.name} ({stored.category.value})")


async def list_targets(store: MongoMonitorStore):
    """List all targets."""
    targets = await store.list_targets()
    if not targets:
        print("❌ No targets found in database")
        return

    print(f"✅ Found {len(targets)} targets:")
    print()
    for i, target in enumerate(targets, 1):
        state = "active" if target.is_active else "inactive"
        frequency = target.check_frequency.value if target.check_frequency else "default"
        print(f"{i:3d}. {target.name} [{target.category.value}, {state}, {frequency}]")
        print(f"     ID: {target.id}")
        print(f"     URL: {target.url}")
        print(f"     Last checked: {target.last_checked_at or 'never'}")
        if target.last_fingerprint:
            print(f"     Fingerprint: {target.last_fingerprint[:16]}...")
        print()


async def set_active(store: MongoMonitorStore, args, active: bool):
    """Toggle a target's active flag."""
    if not args:
        print("❌ Error: target_id required")
        sys.exit(1)
    if await store.set_target_active(args[0], active):
        print(f"✅ Target {args[0]} {'activated' if active else 'deactivated'}")
    else:
        print(f"❌ Target not found: {args[0]}")
        sys.exit(1)


async def print_digest(store: MongoMonitorStore, args):
    """Print a change digest."""
    report_config = config.report_config()
    if args:
        report_config.digest_days = int(args[0])
    generator = DigestGenerator(store, report_config)
    digest = await generator.generate()
    print(generator.render_markdown(digest))


async def main():
    """Main function."""
    if len(sys.argv) < 2:
        print(USAGE)
        sys.exit(1)

    command = sys.argv[1].lower()
    args = sys.argv[2:]

    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )

    store = MongoMonitorStore(config.mongodb_url, config.mongodb_database)
    try:
        await store.connect()
        if command == "add":
            await add_target(store, args)
        elif command == "list":
            await list_targets(store)
        elif command == "deactivate":
            await set_active(store, args, False)
        elif command == "activate":
            await set_active(store, args, True)
        elif command == "digest":
            await print_digest(store, args)
        else:
            print(f"❌ Unknown command: {command}")
            print("Available commands: add, list, deactivate, activate, digest")
            sys.exit(1)
    except MonitorError as e:
        print(f"❌ Error: {e}")
        sys.exit(1)
    finally:
        await store.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
