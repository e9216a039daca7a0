#!/usr/bin/env python3
"""Nightly maintenance job for Railway Cron.

Schedule:
- Run once per day in Railway Cron Jobs (or more often; runs younger than
  MAINTENANCE_INTERVAL_HOURS are skipped unless --force / MAINTENANCE_FORCE=1).

Behavior:
- Re-score and re-classify every place (one transaction per place)
- Persist the report under maintenance/state
- Print the report as one JSON blob for the cron logs

Run (local / Railway):
  cd services/api
  python -m scripts.run_maintenance [--force]

Exit code is 1 when the sweep collected errors.
"""

import asyncio
import json
import os
import sys


# Ensure imports work when executed as a script/module
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.main import init_store  # noqa: E402
from app.services.lifecycle import LifecycleConfig  # noqa: E402
from app.services.maintenance import run_maintenance  # noqa: E402
from app.settings import get_settings  # noqa: E402
from app.stores.postgres import close_db  # noqa: E402
from app.stores.redis import close_redis  # noqa: E402


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


async def main(argv: list[str]) -> int:
    settings = get_settings()
    force = "--force" in argv or _env_flag("MAINTENANCE_FORCE")

    # Same store wiring as the API lifespan, but for a one-off cron run
    store = await init_store(settings)
    try:
        report = await run_maintenance(store, LifecycleConfig.from_settings(settings), force=force)
        print(json.dumps({"ok": not report.errors, "backend": settings.store_backend, "report": report.to_dict()}))
        return 1 if report.errors else 0
    finally:
        await store.close()
        await close_redis()
        await close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1:])))
