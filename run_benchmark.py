#!/usr/bin/env python3
"""
Catalog Benchmark Script - times the direct SQL store against the ORM store.

Both stores are opened on their own SQLite files, every run inserts a fresh
batch of synthetic products, and results are saved as JSON under .tmp/.
"""

import argparse
import asyncio
import json
import logging
import random
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from catalog_bench.benchmark import (
    DEFAULT_INSERT_COUNT,
    DEFAULT_SEARCH_TERM,
    BenchmarkReport,
    BenchmarkRunner,
    format_report,
)
from catalog_bench.db.engine import DIRECT_DATABASE_URL, MANAGED_DATABASE_URL
from catalog_bench.errors import StoreUnavailable
from catalog_bench.stores import DirectStore, ManagedStore


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Direct SQL vs ORM catalog benchmark")
    parser.add_argument("--count", type=int, default=DEFAULT_INSERT_COUNT,
                        help=f"Products inserted per store per run (default: {DEFAULT_INSERT_COUNT})")
    parser.add_argument("--search", default=DEFAULT_SEARCH_TERM,
                        help=f"Search term for the search benchmark (default: {DEFAULT_SEARCH_TERM!r})")
    parser.add_argument("--direct-url", default=DIRECT_DATABASE_URL,
                        help=f"Database URL of the direct store (default: {DIRECT_DATABASE_URL})")
    parser.add_argument("--managed-url", default=MANAGED_DATABASE_URL,
                        help=f"Database URL of the managed store (default: {MANAGED_DATABASE_URL})")
    parser.add_argument("--runs", type=int, default=1, help="Number of benchmark runs (default: 1)")
    parser.add_argument("--reset", action="store_true", help="Clear both stores before every run")
    parser.add_argument("--seed", type=int, help="Seed for the synthetic data generator")
    parser.add_argument("--out-dir", type=Path, help="Output directory (default: .tmp/catalog_bench_<timestamp>)")
    parser.add_argument("--verbose", action="store_true", help="Log store and runner activity")
    return parser.parse_args(argv)


async def run_benchmarks(args: argparse.Namespace) -> List[BenchmarkReport]:
    """Open both stores, run the benchmark ``args.runs`` times and close them."""
    reports = []
    async with await DirectStore.open(args.direct_url) as direct, await ManagedStore.open(args.managed_url) as managed:
        runner = BenchmarkRunner(
            direct,
            managed,
            insert_count=args.count,
            search_term=args.search,
            rng=random.Random(args.seed),
        )
        for run in range(1, args.runs + 1):
            if args.reset:
                print("  🧹 Clearing both stores...")
                await direct.clear_all()
                await managed.clear_all()

            print(f"\n📊 Run {run}/{args.runs}")
            report = await runner.run()
            print(format_report(report))
            reports.append(report)
            if report.aborted:
                print(f"  ❌ Run aborted: {report.error}")
                break
    return reports


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("🚀 Catalog Benchmark (Direct SQL vs ORM)")
    print("=" * 70)
    print(f"📦 Products per insert: {args.count}")
    print(f"🔍 Search term: {args.search!r}")
    print(f"🗄️  Direct store: {args.direct_url}")
    print(f"🗄️  Managed store: {args.managed_url}")

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    out_dir = args.out_dir or Path(f".tmp/catalog_bench_{timestamp}")
    out_dir.mkdir(parents=True, exist_ok=True)
    print(f"📁 Output: {out_dir}")

    start_time = time.time()
    try:
        reports = asyncio.run(run_benchmarks(args))
    except StoreUnavailable as e:
        print(f"❌ {e}")
        return 1

    results_data = {
        "metadata": {
            "count": args.count,
            "search": args.search,
            "direct_url": args.direct_url,
            "managed_url": args.managed_url,
            "runs": args.runs,
            "reset": args.reset,
            "seed": args.seed,
            "timestamp": datetime.now().isoformat(),
        },
        "runs": [report.to_dict() for report in reports],
    }
    results_path = out_dir / "results.json"
    with open(results_path, "w") as f:
        json.dump(results_data, f, indent=2)

    print(f"\n💾 Results saved: {results_path}")
    print(f"🎉 Benchmark completed in {time.time() - start_time:.1f}s")
    return 1 if any(report.aborted for report in reports) else 0


if __name__ == "__main__":
    sys.exit(main())
