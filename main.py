#!/usr/bin/env python3
"""
Catalog Sync - Main Entry Point
Sync the central product catalog with Otto, eBay, Kaufland and Shopify.

Usage:
    python main.py --import otto                       # Import one marketplace
    python main.py --import all                        # Import every marketplace
    python main.py --publish <product_id> --marketplace ebay
    python main.py --sync-batch <id> <id>              # Push current data to all links
    python main.py --stock-update kaufland 389371064017 7
    python main.py --stats
    python main.py --logs --marketplace otto
    python main.py --schedule                          # Daily import-all (cron)
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Dict, List

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent))

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config.settings import settings
from catalog_sync.database import CatalogStore
from catalog_sync.exporter import CatalogExporter
from catalog_sync.importer import ImportRunner
from catalog_sync.logging_config import setup_logging
from catalog_sync.marketplaces import MarketplaceAdapter, build_adapter
from catalog_sync.models import Marketplace, SyncReport
from catalog_sync.sync import SyncService
from catalog_sync.tokens import SettingsCredentialProvider, StoreCredentialProvider, TokenManager

logger = logging.getLogger(__name__)

MARKETPLACE_CHOICES = [mp.value for mp in Marketplace]


def build_token_manager(store: CatalogStore) -> TokenManager:
    """Stored credentials first, then .env."""
    return TokenManager(
        store=store,
        providers=[StoreCredentialProvider(store), SettingsCredentialProvider(settings)],
        timeout=settings.http_timeout,
    )


def build_exporters(store: CatalogStore, token_manager: TokenManager) -> Dict[Marketplace, CatalogExporter]:
    return {
        mp: CatalogExporter(
            build_adapter(mp, settings=settings, token_manager=token_manager),
            store,
            token_manager,
            settings,
        )
        for mp in Marketplace
    }


async def close_exporters(exporters: Dict[Marketplace, CatalogExporter]):
    for exporter in exporters.values():
        await exporter.adapter.close()


def print_report(report: SyncReport):
    """Print fan-out result to console."""
    print("\n" + "=" * 60)
    print(f"📊 SYNC REPORT {report.product_id or ''}")
    print("=" * 60)
    if report.error:
        print(f"❌ {report.error}")
    elif not report.outcomes:
        print("ℹ️  No linked marketplaces")
    for outcome in report.outcomes:
        mark = "✅" if outcome.success else "❌"
        suffix = f" - {outcome.error}" if outcome.error else ""
        print(f"   {mark} {outcome.marketplace}{suffix}")
    print("=" * 60)


async def run_imports(store: CatalogStore, target: str) -> bool:
    runner = ImportRunner(store, build_token_manager(store), settings)
    if target == "all":
        results = await runner.import_all()
    else:
        results = {target: await runner.run(Marketplace(target))}

    print("\n" + "=" * 60)
    print("📥 IMPORT RESULTS")
    print("=" * 60)
    for marketplace, result in results.items():
        if result.success:
            print(f"   ✅ {marketplace}: {result.count} products")
        else:
            print(f"   ❌ {marketplace}: {result.error} ({result.count} saved)")
    print("=" * 60)
    return all(r.success for r in results.values())


async def run_publish(store: CatalogStore, product_id: str, marketplace: str) -> bool:
    token_manager = build_token_manager(store)
    adapter: MarketplaceAdapter = build_adapter(marketplace, settings=settings, token_manager=token_manager)
    try:
        exporter = CatalogExporter(adapter, store, token_manager, settings)
        result = await exporter.publish_product(product_id)
    finally:
        await adapter.close()

    if result.success:
        print(f"✅ Published {product_id} to {marketplace} as {result.external_id}")
    else:
        print(f"❌ Publish failed: {result.error}")
    return result.success


async def run_batch_sync(store: CatalogStore, product_ids: List[str]) -> bool:
    exporters = build_exporters(store, build_token_manager(store))
    try:
        reports = await SyncService(store, exporters).batch_sync(product_ids)
    finally:
        await close_exporters(exporters)

    for report in reports.values():
        print_report(report)
    return all(r.success for r in reports.values())


async def run_stock_update(store: CatalogStore, marketplace: str, external_id: str, quantity: int) -> bool:
    exporters = build_exporters(store, build_token_manager(store))
    try:
        report = await SyncService(store, exporters).handle_incoming_stock_update(
            Marketplace(marketplace), external_id, quantity
        )
    finally:
        await close_exporters(exporters)

    print_report(report)
    return report.success


def show_stats(store: CatalogStore):
    stats = store.get_stats()
    print("\n" + "=" * 60)
    print("📊 CATALOG")
    print("=" * 60)
    print(f"📦 Products: {stats['total_products']}")
    print(f"✨ Optimized: {stats['optimized']}")
    print(f"🚀 Published: {stats['published']}")
    print(f"🔗 Marketplace links: {stats['synced']}")
    for marketplace, count in stats["marketplaces"].items():
        print(f"   • {marketplace}: {count}")
    print("=" * 60)


def show_logs(store: CatalogStore, marketplace: str = None, limit: int = 50):
    entries = store.get_sync_logs(marketplace=marketplace, limit=limit)
    total = store.count_sync_logs(marketplace=marketplace)
    print(f"\n🧾 Sync logs ({len(entries)} of {total})")
    for entry in entries:
        line = (
            f"{entry.created_at.strftime('%Y-%m-%d %H:%M:%S')} | {entry.marketplace:<8} | "
            f"{entry.action.value:<6} | {entry.status.value:<7}"
        )
        if entry.error_message:
            line += f" | {entry.error_message}"
        print(line)


def run_scheduler():
    """Daemon mode: import every marketplace daily at the configured time."""

    async def import_all_job():
        logger.info("⏰ Scheduled import of all marketplaces")
        store = CatalogStore(settings.db_path)
        try:
            await run_imports(store, "all")
        finally:
            store.close()

    async def serve():
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            import_all_job,
            trigger=CronTrigger(hour=settings.schedule_hour, minute=settings.schedule_minute),
            id="import_all",
            replace_existing=True,
            name="Daily import of all marketplaces",
        )
        scheduler.start()
        logger.info(
            f"⏰ Scheduler started, import-all daily at "
            f"{settings.schedule_hour:02d}:{settings.schedule_minute:02d}"
        )
        try:
            await asyncio.Event().wait()
        finally:
            scheduler.shutdown()

    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("👋 Scheduler stopped")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Catalog Sync - Sync the central catalog with Otto, eBay, Kaufland and Shopify"
    )
    parser.add_argument(
        "--import",
        dest="import_target",
        choices=MARKETPLACE_CHOICES + ["all"],
        help="Import listings from a marketplace (or all)",
    )
    parser.add_argument(
        "--publish",
        metavar="PRODUCT_ID",
        help="Create the product on --marketplace",
    )
    parser.add_argument(
        "--marketplace", "-m",
        choices=MARKETPLACE_CHOICES,
        help="Target marketplace for --publish, filter for --logs",
    )
    parser.add_argument(
        "--sync-batch",
        nargs="+",
        metavar="PRODUCT_ID",
        help="Push title, description, price and stock of these products to all their links",
    )
    parser.add_argument(
        "--stock-update",
        nargs=3,
        metavar=("MARKETPLACE", "EXTERNAL_ID", "QTY"),
        help="Apply a stock change reported by a marketplace",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show catalog statistics",
    )
    parser.add_argument(
        "--logs",
        action="store_true",
        help="Show recent sync log entries",
    )
    parser.add_argument(
        "--delete",
        nargs="+",
        metavar="PRODUCT_ID",
        help="Delete products and their marketplace links",
    )
    parser.add_argument(
        "--cleanup",
        choices=MARKETPLACE_CHOICES + ["all"],
        help="Remove a marketplace's links ('all' also removes every product)",
    )
    parser.add_argument(
        "--schedule",
        action="store_true",
        help="Run in daemon mode, importing all marketplaces daily",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: from settings)",
    )

    args = parser.parse_args()

    setup_logging(
        args.log_level,
        json_format=settings.log_json_format,
        log_file=settings.log_file,
        max_bytes=settings.log_rotation_mb * 1024 * 1024,
    )

    if args.schedule:
        run_scheduler()
        return

    if args.publish and not args.marketplace:
        parser.error("--publish requires --marketplace")

    if args.stock_update:
        marketplace, external_id, quantity = args.stock_update
        if marketplace not in MARKETPLACE_CHOICES:
            parser.error(f"unknown marketplace '{marketplace}'")
        try:
            quantity = int(quantity)
        except ValueError:
            parser.error(f"QTY must be an integer, got '{quantity}'")

    ok = True
    with CatalogStore(settings.db_path) as store:
        if args.import_target:
            ok = asyncio.run(run_imports(store, args.import_target))
        elif args.publish:
            ok = asyncio.run(run_publish(store, args.publish, args.marketplace))
        elif args.sync_batch:
            ok = asyncio.run(run_batch_sync(store, args.sync_batch))
        elif args.stock_update:
            ok = asyncio.run(run_stock_update(store, marketplace, external_id, quantity))
        elif args.stats:
            show_stats(store)
        elif args.logs:
            show_logs(store, args.marketplace)
        elif args.delete:
            deleted = store.delete_products(args.delete)
            print(f"🗑️  Deleted {deleted} products")
        elif args.cleanup:
            result = store.cleanup_marketplace(args.cleanup)
            print(f"🧹 Removed {result['links']} links and {result['products']} products")
        else:
            parser.print_help()
            print("\n❌ Please provide an action (--import, --publish, --sync-batch, --stats, ...)")
            sys.exit(1)

    if not ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
