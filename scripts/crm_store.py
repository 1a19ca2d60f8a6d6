#!/usr/bin/env python3
"""CLI script to inspect and maintain the harvested CRM document.

Usage:
    python scripts/crm_store.py show
    python scripts/crm_store.py delete contacts c-1f3a9
    python scripts/crm_store.py clear
    python scripts/crm_store.py init

Connects to the backend configured by REDIS_URL / STORAGE_BACKEND from the
environment or .env file.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from datetime import datetime, timezone

# Ensure project root is on sys.path so we can import src.harvest
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def run(command: str, entity_type: str | None, record_id: str | None) -> int:
    """Execute one command against the store. Returns the exit code."""
    from src.harvest.core.logging import configure_structlog
    from src.harvest.services import build_storage_services
    from src.harvest.storage.schemas import EntityType

    configure_structlog()
    services = build_storage_services()
    orchestrator = services.orchestrator

    try:
        if command == "show":
            result = await orchestrator.retrieve_all_data()
            if not result.success or result.payload is None:
                print(f"Read failed: {result.error_message}")
                return 1
            document = result.payload
            for entity in EntityType:
                print(f"  {entity.value:<9} {len(document.collection(entity))}")
            if document.last_sync:
                synced = datetime.fromtimestamp(document.last_sync / 1000, tz=timezone.utc)
                print(f"  last sync {synced.isoformat()}")
            else:
                print("  last sync never")
            print(f"  syncing   {document.sync_in_progress}")
            return 0

        if command == "delete":
            result = await orchestrator.remove_record(entity_type, record_id)
            if not result.success:
                print(f"Delete failed: {result.error_message}")
                return 1
            print(f"Deleted {entity_type}/{record_id}")
            return 0

        if command == "clear":
            result = await orchestrator.clear_all()
            if not result.success:
                print(f"Clear failed: {result.error_message}")
                return 1
            print("All records cleared")
            return 0

        if command == "init":
            result = await orchestrator.initialize_default_storage()
            if not result.success:
                print(f"Init failed: {result.error_message}")
                return 1
            print("Default document created" if result.payload else "Document already present")
            return 0

        print(f"Unknown command: {command}")
        return 1
    finally:
        await services.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect or maintain harvested CRM records")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("show", help="Print collection sizes and sync state")
    subparsers.add_parser("clear", help="Remove every stored record")
    subparsers.add_parser("init", help="Create the empty document if missing")

    delete = subparsers.add_parser("delete", help="Remove one record")
    delete.add_argument("entity_type", choices=["contacts", "deals", "tasks"])
    delete.add_argument("record_id")

    args = parser.parse_args()
    exit_code = asyncio.run(
        run(args.command, getattr(args, "entity_type", None), getattr(args, "record_id", None))
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
