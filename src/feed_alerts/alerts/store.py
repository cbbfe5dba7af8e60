# SPDX-License-Identifier: MIT
# src/feed_alerts/alerts/store.py
"""
Alert storage and trigger history.
"""
from __future__ import annotations
import json
import logging
from typing import Dict, Any, Iterable, List, Optional

from .schema import AlertConfig, AlertTrigger
from .storage import Storage, MemoryStorage

logger = logging.getLogger(__name__)

ALERTS_KEY = "feed-alerts:alerts"
HISTORY_KEY = "feed-alerts:alert-history"
DEFAULT_HISTORY_LIMIT = 1000


def _load_records(storage: Storage, key: str) -> List[Dict[str, Any]]:
    """Raw JSON records under ``key``; anything unreadable yields []."""
    try:
        raw = storage.get(key)
    except Exception as e:
        logger.error(f"Failed to read {key} from storage: {e}", exc_info=True)
        return []

    if not raw:
        return []

    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.error(f"Corrupted data under {key}, treating as empty: {e}")
        return []

    if not isinstance(parsed, list):
        logger.error(f"Unexpected {type(parsed).__name__} under {key}, treating as empty")
        return []

    return [r for r in parsed if isinstance(r, dict)]


def _save_records(storage: Storage, key: str, records: List[Dict[str, Any]]) -> bool:
    try:
        storage.set(key, json.dumps(records))
        return True
    except Exception as e:
        logger.error(f"Failed to save {key} to storage: {e}", exc_info=True)
        return False


class AlertStore:
    """
    Keyed collection of alert rules.

    Every mutation rewrites the whole collection under ALERTS_KEY.
    """

    def __init__(self, storage: Optional[Storage] = None, key: str = ALERTS_KEY):
        self.storage = storage if storage is not None else MemoryStorage()
        self.key = key
        self._alerts: Dict[str, AlertConfig] = {}
        self.reload()

    def load(self) -> List[AlertConfig]:
        alerts = []
        for record in _load_records(self.storage, self.key):
            try:
                alerts.append(AlertConfig.from_dict(record))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping unreadable alert record: {e}")
        return alerts

    def reload(self):
        self._alerts = {a.id: a for a in self.load()}
        logger.debug(f"Loaded {len(self._alerts)} alerts")

    def save(self) -> bool:
        return _save_records(self.storage, self.key, [a.to_dict() for a in self._alerts.values()])

    def all(self) -> List[AlertConfig]:
        return list(self._alerts.values())

    def get(self, alert_id: str) -> Optional[AlertConfig]:
        return self._alerts.get(alert_id)

    def put(self, alert: AlertConfig) -> bool:
        self._alerts[alert.id] = alert
        return self.save()

    def delete(self, alert_id: str) -> bool:
        if alert_id not in self._alerts:
            return False
        del self._alerts[alert_id]
        self.save()
        return True

    def replace_all(self, alerts: Iterable[AlertConfig]) -> bool:
        self._alerts = {a.id: a for a in alerts}
        return self.save()

    def __contains__(self, alert_id: str) -> bool:
        return alert_id in self._alerts

    def __len__(self) -> int:
        return len(self._alerts)


class HistoryStore:
    """
    Bounded append log of trigger records, oldest first.

    Each write keeps only the most recent ``limit`` entries.
    """

    def __init__(
        self,
        storage: Optional[Storage] = None,
        key: str = HISTORY_KEY,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        self.storage = storage if storage is not None else MemoryStorage()
        self.key = key
        self.limit = max(1, int(limit))
        self._entries: List[AlertTrigger] = []
        self.reload()

    def load(self) -> List[AlertTrigger]:
        entries = []
        for record in _load_records(self.storage, self.key):
            try:
                entries.append(AlertTrigger.from_dict(record))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping unreadable trigger record: {e}")
        return entries[-self.limit:]

    def reload(self):
        self._entries = self.load()
        logger.debug(f"Loaded {len(self._entries)} history entries")

    def _trim(self):
        overflow = len(self._entries) - self.limit
        if overflow > 0:
            del self._entries[:overflow]
            logger.debug(f"Evicted {overflow} oldest history entries")

    def save(self) -> bool:
        self._trim()
        return _save_records(self.storage, self.key, [t.to_dict() for t in self._entries])

    def append(self, triggers: Iterable[AlertTrigger]) -> bool:
        self._entries.extend(triggers)
        return self.save()

    def entries(self) -> List[AlertTrigger]:
        return list(self._entries)

    def remove_alert(self, alert_id: str) -> int:
        """Drop every entry for ``alert_id``; returns how many were removed."""
        before = len(self._entries)
        self._entries = [t for t in self._entries if t.alert_id != alert_id]
        removed = before - len(self._entries)
        self.save()
        return removed

    def clear(self) -> bool:
        self._entries = []
        return self.save()

    def replace_all(self, triggers: Iterable[AlertTrigger]) -> bool:
        self._entries = list(triggers)
        return self.save()

    def update(self, trigger: AlertTrigger) -> bool:
        for i, existing in enumerate(self._entries):
            if existing.id == trigger.id:
                self._entries[i] = trigger
                return self.save()
        return False

    def __len__(self) -> int:
        return len(self._entries)


def storage_stats(storage: Storage) -> Dict[str, int]:
    """Entry counts and byte size of the persisted alert state."""
    sizes = {}
    total = 0
    for name, key in (("alerts", ALERTS_KEY), ("history", HISTORY_KEY)):
        try:
            raw = storage.get(key) or ""
        except Exception as e:
            logger.error(f"Failed to read {key} for stats: {e}", exc_info=True)
            raw = ""
        total += len(raw.encode("utf-8"))
        sizes[name] = len(_load_records(storage, key)) if raw else 0
    sizes["total_bytes"] = total
    return sizes


def clear_all(storage: Storage) -> bool:
    try:
        storage.remove(ALERTS_KEY)
        storage.remove(HISTORY_KEY)
        return True
    except Exception as e:
        logger.error(f"Failed to clear alert data: {e}", exc_info=True)
        return False
