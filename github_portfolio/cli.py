from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .aggregator import fetch_snapshot
from .config import load_config
from .exceptions import AggregationError
from .github_api import AuthContext
from .llm import generate_summary
from .metrics import build_dashboard
from .report import write_report
from .store import JsonSnapshotStore, persist_snapshot

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="github-portfolio",
        description="Build a developer portfolio from the GitHub account behind a token.",
    )
    parser.add_argument("--config", type=Path, help="Path to settings YAML file", default=None)
    parser.add_argument("--output-dir", dest="output_dir", type=Path, help="Directory for the generated report")
    parser.add_argument("--store-dir", dest="store_dir", type=Path, help="Directory for stored snapshots")
    parser.add_argument("--no-store", dest="store", action="store_false", help="Do not persist the snapshot")
    parser.add_argument("--buckets", choices=("year_month", "month_of_year"), help="Monthly activity bucketing")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.set_defaults(store=None)
    return parser


def app(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)
    if args.output_dir:
        config.output.directory = args.output_dir
    if args.store_dir:
        config.store.directory = args.store_dir
    if args.store is not None:
        config.store.enabled = args.store
    if args.buckets:
        config.metrics.monthly_buckets = args.buckets

    auth = AuthContext.from_env(config.github.token_env)
    try:
        snapshot = asyncio.run(fetch_snapshot(auth, config))
    except AggregationError as exc:
        logger.error("Aggregation failed: %s", exc.message)
        parser.error(exc.user_message)
        return

    dashboard = build_dashboard(
        snapshot,
        config.metrics,
        lookback_days=config.fetch.commit_lookback_days,
        recent_limit=config.output.recent_events,
    )
    summary = generate_summary(snapshot, config)

    if config.store.enabled:
        store = JsonSnapshotStore(config.store.directory)
        try:
            persist_snapshot(store, snapshot, dashboard.months)
            store.save_summary(summary.text, summary.source)
        except OSError as exc:
            logger.warning("Could not store snapshot in %s: %s", config.store.directory, exc)

    report_path = write_report(snapshot, dashboard, summary, config)
    print(f"Report generated: {report_path}")


if __name__ == "__main__":  # pragma: no cover
    app(sys.argv[1:])
