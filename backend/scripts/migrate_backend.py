#!/usr/bin/env python
"""
Copy all contractions from one spreadsheet backend (or only local storage)
into another spreadsheet backend.
Run with: cd backend; python -m scripts.migrate_backend --to-url <script url> [--from-url <script url>]
"""

import argparse
import asyncio
import logging
import sys

from contraction_sync.config import settings
from contraction_sync.connectors.factory import build_adapter
from contraction_sync.database import create_db_engine, create_session_factory, init_db
from contraction_sync.schemas.backend import AdapterKind, BackendConfig
from contraction_sync.services.event_store import EventStore
from contraction_sync.services.migration import MigrationService

log = logging.getLogger("migrate_backend")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--from-url", help="Source sheets script URL (omit to migrate local data only)")
    parser.add_argument("--from-sheet", default="Contractions")
    parser.add_argument("--to-url", required=True, help="Target sheets script URL")
    parser.add_argument("--to-sheet", default="Contractions")
    parser.add_argument("--database-url", default=settings.database_url)
    return parser.parse_args(argv)


async def run(args) -> int:
    db_engine = create_db_engine(args.database_url)
    init_db(db_engine)
    db = create_session_factory(db_engine)()

    if args.from_url:
        source_config = BackendConfig(kind=AdapterKind.POLLING, script_url=args.from_url, sheet_name=args.from_sheet)
    else:
        source_config = BackendConfig()
    target_config = BackendConfig(kind=AdapterKind.POLLING, script_url=args.to_url, sheet_name=args.to_sheet)

    source = build_adapter(source_config, timeout=settings.request_timeout_seconds)
    target = build_adapter(target_config, timeout=settings.request_timeout_seconds)
    try:
        service = MigrationService(source, target, EventStore(db), on_progress=print)
        result = await service.migrate()
    finally:
        await source.close()
        await target.close()
        db.close()
        db_engine.dispose()

    print(f"Migrated {result.migrated}, verified {result.verified}")
    for error in result.errors:
        print(f"  error: {error}")
    return 0 if result.success else 1


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level.upper(), format='%(asctime)s - %(name)s - %(levelname)-8s - %(message)s')
    sys.exit(asyncio.run(run(parse_args())))
