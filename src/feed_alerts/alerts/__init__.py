# SPDX-License-Identifier: MIT
# src/feed_alerts/alerts/__init__.py
"""
Keyword alerting over incoming feed items.

This module provides:
- Alert rules with keyword, source and schedule filters
- Bounded trigger history with acknowledgement
- Throttled multi-channel notification (browser, sound, email, webhook)
- Subscriber fan-out of new triggers and lifecycle events
"""

from .orchestration import AlertEngine, create_engine_from_config
from .schema import (
    AlertConfig,
    AlertEvent,
    AlertEventType,
    AlertPriority,
    AlertScheduling,
    AlertStats,
    AlertTrigger,
    FeedItem,
    NotificationSettings,
)
from .storage import MemoryStorage, SqliteStorage
from .validation import AlertValidationError

__all__ = [
    "AlertEngine",
    "create_engine_from_config",
    "AlertConfig",
    "AlertEvent",
    "AlertEventType",
    "AlertPriority",
    "AlertScheduling",
    "AlertStats",
    "AlertTrigger",
    "FeedItem",
    "NotificationSettings",
    "MemoryStorage",
    "SqliteStorage",
    "AlertValidationError",
]
