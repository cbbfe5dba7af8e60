#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# src/feed_alerts/alerts/runner.py
"""
CLI to run one alert monitoring pass over a file of feed items.

Features:
- Loads feed items from a JSON array, a {"items": [...]} object, or JSONL
- Uses the SQLite-backed alert state (or a YAML/JSON config with seed rules)
- Dry-run mode matches against a scratch copy of the state and sends nothing

Usage examples:
  # Match items against stored alerts and notify
  feed-alerts-run --items items.json

  # Seed rules from config, match, print stats, deliver nothing
  feed-alerts-run --items items.jsonl --config alerts.yaml --dry-run --stats
"""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

from feed_alerts.config import Settings
from feed_alerts.alerts.delivery import (
    Notifier,
    NotificationHost,
    Notification,
    CHANNEL_BROWSER,
    CHANNEL_SOUND,
    CHANNEL_EMAIL,
    CHANNEL_WEBHOOK,
)
from feed_alerts.alerts.orchestration import AlertEngine, create_engine_from_config
from feed_alerts.alerts.storage import MemoryStorage, SqliteStorage
from feed_alerts.alerts.store import ALERTS_KEY, HISTORY_KEY

logger = logging.getLogger(__name__)


class LogOnlyChannel:
    """Channel that records what it would have sent."""

    def __init__(self, name: str):
        self.name = name

    def send(self, notification: Notification) -> None:
        logger.info(f"[dry-run] {self.name}: {notification.title} | {notification.body}")


def load_items(path: str) -> List[Dict[str, Any]]:
    """Read feed items from JSON or JSONL."""
    file = Path(path)
    text = file.read_text(encoding="utf-8")

    if file.suffix == ".jsonl":
        return [json.loads(line) for line in text.splitlines() if line.strip()]

    data = json.loads(text)
    if isinstance(data, dict):
        data = data.get("items", [])
    if not isinstance(data, list):
        raise ValueError(f"Expected a list of feed items in {path}")
    return data


def _dry_run_storage(db_path: str) -> MemoryStorage:
    """In-memory copy of the persisted alert state."""
    if not Path(db_path).exists():
        return MemoryStorage()
    source = SqliteStorage(db_path)
    seeded = {}
    for key in (ALERTS_KEY, HISTORY_KEY):
        value = source.get(key)
        if value is not None:
            seeded[key] = value
    return MemoryStorage(seeded)


def _dry_run_notifier(settings: Settings) -> Notifier:
    return Notifier(
        host=NotificationHost(permission=True),
        max_individual=settings.max_individual_notifications,
        auto_close_seconds=settings.auto_close_seconds,
        max_workers=1,
        channels={
            name: LogOnlyChannel(name)
            for name in (CHANNEL_BROWSER, CHANNEL_SOUND, CHANNEL_EMAIL, CHANNEL_WEBHOOK)
        },
    )


def build_engine(db_path: Optional[str], config_path: Optional[str], dry_run: bool) -> AlertEngine:
    settings = Settings.from_overrides(db_path=db_path)
    kwargs: Dict[str, Any] = {}
    if dry_run:
        kwargs["storage"] = _dry_run_storage(settings.db_path)
        kwargs["notifier"] = _dry_run_notifier(settings)
    elif db_path or not config_path:
        kwargs["storage"] = SqliteStorage(settings.db_path)

    if config_path:
        engine = create_engine_from_config(config_path, **kwargs)
    else:
        engine = AlertEngine(settings=settings, **kwargs)
    # a one-shot run always checks the items it was given
    engine.start_monitoring()
    return engine


def run(items_path: str, db_path: Optional[str] = None, config_path: Optional[str] = None,
        dry_run: bool = False) -> Dict[str, Any]:
    """Run a single monitoring pass and return summary stats."""
    items = load_items(items_path)
    engine = build_engine(db_path, config_path, dry_run)
    try:
        triggers = engine.check_feed_items(items)
        for trigger in triggers:
            logger.info(
                f"Triggered {trigger.alert_id} on {trigger.feed_item.title!r} "
                f"({', '.join(trigger.matched_keywords)})"
            )
        stats = engine.get_alert_stats().to_dict()
    finally:
        engine.close()

    return {
        "items_checked": len(items),
        "triggers": len(triggers),
        **stats,
    }


def main(argv: Optional[List[str]] = None) -> None:
    level = getattr(logging, Settings().log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format='%(asctime)s - %(levelname)s - %(message)s')

    p = argparse.ArgumentParser(description="Check feed items against keyword alerts")
    p.add_argument("--items", required=True, help="JSON/JSONL file of feed items")
    p.add_argument("--db", help="SQLite state file (default: FEED_ALERTS_DB)")
    p.add_argument("--config", help="YAML/JSON config with an 'alerts' block")
    p.add_argument("--dry-run", action="store_true", help="Match but don't persist or notify")
    p.add_argument("--stats", action="store_true", help="Print summary stats as JSON")

    args = p.parse_args(argv)

    logger.info("%s", "=" * 60)
    logger.info("Feed Alerts Runner")
    logger.info("items: %s | db: %s | config: %s | dry_run: %s",
                args.items, args.db or "default", args.config or "none", args.dry_run)
    logger.info("%s", "=" * 60)

    stats = run(args.items, db_path=args.db, config_path=args.config, dry_run=args.dry_run)

    logger.info("Summary: items=%s triggers=%s alerts=%s active=%s",
                stats["items_checked"], stats["triggers"], stats["totalAlerts"], stats["activeAlerts"])
    if args.stats:
        print(json.dumps(stats, indent=2))


if __name__ == "__main__":
    main()
