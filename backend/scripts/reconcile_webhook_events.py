"""
Webhook Reconciliation Script
=============================
Replays stored webhook events that arrived before their WABA was linked
to a tenant. Events whose WABA still resolves to nobody are left as-is.

Usage:
    python scripts/reconcile_webhook_events.py
    python scripts/reconcile_webhook_events.py --limit 500
"""

import argparse
import asyncio
import os
import sys

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Add the backend directory to Python path so we can import the app
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.shared.core.config import settings  # noqa: E402
from app.shared.core.constants import RECONCILE_BATCH_SIZE  # noqa: E402
from app.shared.core.logging import setup_logging  # noqa: E402
from app.shared.db.session import AsyncSessionLocal, engine  # noqa: E402
from app.modules.whatsapp_connect.services.webhook_router import WebhookRouter  # noqa: E402


async def reconcile(limit: int) -> dict:
    try:
        async with AsyncSessionLocal() as db:
            router = WebhookRouter(db)
            unprocessed = await router.event_repo.count_unprocessed()
            print(f"📥 {unprocessed} unprocessed webhook events")
            return await router.reconcile_unattributed(limit=limit)
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Replay unattributed WhatsApp webhook events")
    parser.add_argument("--limit", type=int, default=RECONCILE_BATCH_SIZE, help="Max events to examine")
    args = parser.parse_args()

    setup_logging(settings.LOG_LEVEL)
    summary = asyncio.run(reconcile(args.limit))

    print(f"🔎 Examined:           {summary['examined']}")
    print(f"✅ Attributed:         {summary['attributed']}")
    print(f"⏳ Still unattributed: {summary['still_unattributed']}")
    print(f"❌ Failed:             {summary['failed']}")
    return 1 if summary["failed"] else 0


if __name__ == "__main__":
    sys.exit(main())
