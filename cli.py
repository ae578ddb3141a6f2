#!/usr/bin/env python3
"""Command line entry point for discovery, refresh and export jobs"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

import httpx

from pricing.chains import DEFAULT_REGISTRY
from pricing.config import Settings, settings
from pricing.discovery import build_aggregator
from pricing.errors import PricingError
from pricing.fetchers import DefiLlamaFetcher
from pricing.logging_config import setup_logging
from pricing.services import PriceRefreshService
from pricing.storage import RedisStorage, StorageFacade


def resolve_chains(values: Optional[List[str]]) -> Optional[List[int]]:
    if not values:
        return None
    chain_ids = []
    for value in values:
        chain = DEFAULT_REGISTRY.resolve_alias(value)
        if chain is None:
            raise SystemExit(f"❌ Unknown chain: {value}")
        chain_ids.append(chain.id)
    return chain_ids


async def open_storage(cfg: Settings) -> StorageFacade:
    facade = StorageFacade()
    await facade.initialize(
        cfg.storage_type,
        ttl_seconds=cfg.cache_ttl_seconds,
        backup_dir=cfg.backup_dir,
        redis_url=cfg.redis_url,
        redis_key_prefix=cfg.redis_key_prefix,
    )
    return facade


async def cli_discover(cfg: Settings, chain_ids: Optional[List[int]]) -> int:
    async with httpx.AsyncClient(timeout=cfg.request_timeout_seconds) as client:
        aggregator = build_aggregator(cfg, client)
        targets = chain_ids or aggregator.chain_ids
        reports = await asyncio.gather(*(aggregator.discover_with_report(cid) for cid in targets))

    for report in reports:
        print(f"\n🔍 Chain {report.chain_id}: {len(report.tokens)} unique tokens ({report.elapsed_ms} ms)")
        for source, count in report.source_counts.items():
            print(f"  ✓ {source}: {count}")
        for source in report.failed_sources:
            print(f"  ✗ {source}")
    return 0


async def cli_refresh(cfg: Settings, chain_ids: Optional[List[int]]) -> int:
    storage = await open_storage(cfg)
    try:
        async with httpx.AsyncClient(timeout=cfg.request_timeout_seconds) as client:
            service = PriceRefreshService(
                aggregator=build_aggregator(cfg, client),
                fetchers=[DefiLlamaFetcher(client)],
                storage=storage,
            )
            results = await service.refresh_all(chain_ids)
    finally:
        await storage.close()

    failed = 0
    for result in results:
        if result.error:
            failed += 1
            print(f"❌ Chain {result.chain_id}: {result.error}")
        else:
            print(f"💾 Chain {result.chain_id}: {result.stored}/{result.discovered} tokens priced")
    return 1 if failed == len(results) and results else 0


async def cli_export(cfg: Settings, chain_ids: Optional[List[int]], humanized: bool) -> int:
    storage = await open_storage(cfg)
    try:
        all_prices = await storage.get_all_prices()
    finally:
        await storage.close()

    output = {
        str(chain_id): {
            address: str(price.price.to_decimal()) if humanized else price.price.to_wire()
            for address, price in prices.items()
        }
        for chain_id, prices in all_prices.items()
        if chain_ids is None or chain_id in chain_ids
    }
    json.dump(output, sys.stdout, indent=2, sort_keys=True)
    print()
    return 0


async def cli_stats(cfg: Settings, chain_ids: Optional[List[int]]) -> int:
    storage = await open_storage(cfg)
    try:
        if chain_ids:
            stats = {str(cid): await storage.get_stats(cid) for cid in chain_ids}
        else:
            stats = {str(cid): value for cid, value in (await storage.get_stats()).items()}
        backend = storage.backend_type.value if storage.backend_type else "none"
    finally:
        await storage.close()

    print(json.dumps({"storage": backend, "chains": stats}, indent=2))
    return 0


async def cli_migrate(cfg: Settings) -> int:
    """Copy file snapshots into Redis."""
    try:
        redis_storage = await RedisStorage.connect(
            cfg.redis_url,
            ttl_seconds=cfg.cache_ttl_seconds,
            key_prefix=cfg.redis_key_prefix,
        )
    except PricingError as exc:
        print(f"❌ {exc}")
        return 1

    try:
        loaded = await redis_storage.load_from_file_backup(cfg.backup_dir)
    finally:
        await redis_storage.close()
    print(f"📊 Loaded {loaded} prices from {cfg.backup_dir} into Redis")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Token price service CLI")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    discover = subparsers.add_parser("discover", help="Run token discovery and print per-source counts")
    discover.add_argument("--chain", action="append", help="Chain ID or name (repeatable)")

    refresh = subparsers.add_parser("refresh", help="Discover, price and store tokens")
    refresh.add_argument("--chain", action="append", help="Chain ID or name (repeatable)")

    export = subparsers.add_parser("export", help="Print cached prices as JSON")
    export.add_argument("--chain", action="append", help="Chain ID or name (repeatable)")
    export.add_argument("--humanized", action="store_true", help="Decimal USD instead of micro-dollars")

    stats = subparsers.add_parser("stats", help="Show cache statistics")
    stats.add_argument("--chain", action="append", help="Chain ID or name (repeatable)")

    subparsers.add_parser("migrate", help="Load file snapshots into Redis")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    chain_ids = resolve_chains(getattr(args, "chain", None))
    if args.command == "discover":
        return asyncio.run(cli_discover(settings, chain_ids))
    if args.command == "refresh":
        return asyncio.run(cli_refresh(settings, chain_ids))
    if args.command == "export":
        return asyncio.run(cli_export(settings, chain_ids, args.humanized))
    if args.command == "stats":
        return asyncio.run(cli_stats(settings, chain_ids))
    if args.command == "migrate":
        return asyncio.run(cli_migrate(settings))
    return 2


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n👋 Interrupted")
        sys.exit(1)
