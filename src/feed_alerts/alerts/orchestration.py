# SPDX-License-Identifier: MIT
# src/feed_alerts/alerts/orchestration.py
"""
Alert engine - ties rule storage, matching, scheduling, history,
notification and subscribers together behind one caller-facing object.
"""
from __future__ import annotations
import logging
import uuid
from datetime import datetime, timedelta, tzinfo
from typing import Dict, Any, Callable, Iterable, List, Mapping, Optional, Union

from feed_alerts.config import Settings
from feed_alerts.utils.time_utils import utc_now, to_iso, epoch_ms, ensure_aware, resolve_zone
from .bus import SubscriberBus
from .delivery import Notifier
from .matcher import match_item
from .schedule import is_eligible
from .schema import (
    AlertConfig,
    AlertEvent,
    AlertEventType,
    AlertStats,
    AlertTrigger,
    FeedItem,
)
from .storage import Storage, MemoryStorage, SqliteStorage
from .store import AlertStore, HistoryStore
from .validation import validate_complete_alert_form

logger = logging.getLogger(__name__)

# fields owned by the engine; callers cannot set them through update_alert
_ENGINE_FIELDS = ("id", "createdAt", "triggerCount", "lastTriggered")


def generate_id(prefix: str, now: Optional[datetime] = None) -> str:
    return f"{prefix}_{epoch_ms(now or utc_now())}_{uuid.uuid4().hex[:9]}"


def _plain(value: Any) -> Any:
    """Turn dataclass/enum values inside caller input into plain JSON-ish data."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if hasattr(value, "value") and not isinstance(value, (str, bytes)):
        return value.value
    if isinstance(value, datetime):
        return to_iso(value)
    return value


def _normalize_input(config: Union[AlertConfig, Mapping[str, Any]]) -> Dict[str, Any]:
    if isinstance(config, AlertConfig):
        return config.to_dict()
    return {k: _plain(v) for k, v in dict(config).items()}


def _source_allowed(source: str, allowed: Optional[List[str]]) -> bool:
    if not allowed:
        return True
    wanted = (source or "").strip().lower()
    return any(wanted == str(s).strip().lower() for s in allowed)


class AlertEngine:
    """
    Single-writer alert engine.

    Construct one per process and pass it to whoever needs it. Callers must
    serialize ``check_feed_items``; the engine does no locking of its own.

    Monitoring is off until ``start_monitoring()`` (or ``initialize()``) is
    called; while off, ``check_feed_items`` is a no-op.
    """

    def __init__(
        self,
        storage: Optional[Storage] = None,
        notifier: Optional[Notifier] = None,
        bus: Optional[SubscriberBus] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        history_limit: Optional[int] = None,
        default_tz: Optional[Union[str, tzinfo]] = None,
    ):
        """
        Args:
            storage: Backend for alerts and history (default: in-memory)
            notifier: Notification dispatcher (default: built from settings)
            bus: Subscriber bus (default: a fresh one)
            settings: Settings instance (default: from environment)
            clock: Callable returning the current aware datetime (default: UTC now)
            history_limit: Max history entries kept (default: settings.history_limit)
            default_tz: Zone for schedules without their own timezone
                        (default: settings.default_timezone, else host local)
        """
        self.settings = settings or Settings()
        self.storage = storage if storage is not None else MemoryStorage()
        self.clock = clock or utc_now
        self.bus = bus or SubscriberBus()
        self.notifier = notifier or Notifier(
            smtp_config=self.settings.smtp_config(),
            webhook_timeout=self.settings.webhook_timeout,
            max_individual=self.settings.max_individual_notifications,
            auto_close_seconds=self.settings.auto_close_seconds,
            max_workers=self.settings.notifier_workers,
        )

        if default_tz is None:
            default_tz = self.settings.default_timezone or None
        if isinstance(default_tz, str):
            zone = resolve_zone(default_tz)
            if zone is None:
                logger.warning(f"Unknown default timezone {default_tz!r}, using host local time")
            default_tz = zone
        self.default_tz: Optional[tzinfo] = default_tz

        self.alerts = AlertStore(self.storage)
        self.history = HistoryStore(
            self.storage,
            limit=history_limit if history_limit is not None else self.settings.history_limit,
        )
        self._monitoring = False

    # ===========================================
    # Alert configuration
    # ===========================================

    def create_alert(self, config: Union[AlertConfig, Mapping[str, Any]]) -> str:
        """
        Validate and store a new alert; returns its id.

        Raises:
            AlertValidationError: if name, keywords, priority or
                notification targets are invalid
        """
        data = _normalize_input(config)
        validate_complete_alert_form(data).raise_if_invalid()

        now = self.clock()
        data.update({
            "id": generate_id("alert", now),
            "createdAt": to_iso(now),
            "triggerCount": 0,
        })
        data.pop("lastTriggered", None)
        data.setdefault("active", True)

        alert = AlertConfig.from_dict(data)
        self.alerts.put(alert)
        logger.info(f"Created alert {alert.id} ({alert.name!r}, {len(alert.keywords)} keywords)")
        self.bus.emit(AlertEvent(AlertEventType.ALERT_CREATED, alert.copy()))
        return alert.id

    def update_alert(self, alert_id: str, updates: Union[AlertConfig, Mapping[str, Any]]) -> bool:
        """
        Merge ``updates`` into an existing alert. Returns False if unknown.

        id, createdAt, triggerCount and lastTriggered are engine-owned and
        ignored here.

        Raises:
            AlertValidationError: if the updated fields are invalid
        """
        alert = self.alerts.get(alert_id)
        if alert is None:
            return False

        changes = _normalize_input(updates)
        ignored = [k for k in _ENGINE_FIELDS if k in changes]
        for key in ignored:
            changes.pop(key)
        if ignored:
            logger.debug(f"Ignoring engine-owned fields in update of {alert_id}: {ignored}")

        validate_complete_alert_form(changes, partial=True).raise_if_invalid()

        merged = {**alert.to_dict(), **changes}
        updated = AlertConfig.from_dict(merged)
        self.alerts.put(updated)
        self.bus.emit(AlertEvent(AlertEventType.ALERT_UPDATED, updated.copy()))
        return True

    def delete_alert(self, alert_id: str, purge_history: bool = False) -> bool:
        """Remove an alert; its history is kept unless ``purge_history``."""
        if not self.alerts.delete(alert_id):
            return False
        if purge_history:
            removed = self.history.remove_alert(alert_id)
            logger.info(f"Purged {removed} history entries for deleted alert {alert_id}")
        logger.info(f"Deleted alert {alert_id}")
        self.bus.emit(AlertEvent(AlertEventType.ALERT_DELETED, alert_id))
        return True

    def toggle_alert(self, alert_id: str) -> bool:
        alert = self.alerts.get(alert_id)
        if alert is None:
            return False
        alert.active = not alert.active
        self.alerts.save()
        self.bus.emit(AlertEvent(AlertEventType.ALERT_UPDATED, alert.copy()))
        return True

    def snooze_alert(self, alert_id: str, minutes: float) -> bool:
        """Suppress an alert for ``minutes`` from now; expiry is checked lazily."""
        alert = self.alerts.get(alert_id)
        if alert is None:
            return False
        until = self.clock() + timedelta(minutes=minutes)
        alert.scheduling.snooze_until = ensure_aware(until)
        self.alerts.save()
        logger.info(f"Snoozed alert {alert_id} until {to_iso(until)}")
        self.bus.emit(AlertEvent(
            AlertEventType.ALERT_SNOOZED,
            {"alertId": alert_id, "until": alert.scheduling.snooze_until},
        ))
        return True

    def get_alerts(self) -> List[AlertConfig]:
        return [a.copy() for a in self.alerts.all()]

    def get_alert(self, alert_id: str) -> Optional[AlertConfig]:
        alert = self.alerts.get(alert_id)
        return alert.copy() if alert is not None else None

    # ===========================================
    # Monitoring and matching
    # ===========================================

    def initialize(self) -> bool:
        """Ask the host for notification permission and start monitoring."""
        granted = self.notifier.request_permission()
        self.start_monitoring()
        return granted

    def start_monitoring(self):
        self._monitoring = True
        logger.info("Alert monitoring started")

    def stop_monitoring(self):
        self._monitoring = False
        logger.info("Alert monitoring stopped")

    def is_currently_monitoring(self) -> bool:
        return self._monitoring

    def check_feed_items(self, items: Iterable[Union[FeedItem, Mapping[str, Any]]]) -> List[AlertTrigger]:
        """
        Run one monitoring pass over ``items``.

        Every eligible (alert, item) pair with at least one keyword hit yields
        a trigger. History, stats, notifications and subscribers are updated
        afterwards, each step isolated from failures in the others.
        """
        if not self._monitoring:
            return []

        now = ensure_aware(self.clock())
        feed_items = [self._coerce_item(i) for i in items]
        feed_items = [i for i in feed_items if i is not None]

        candidates = [
            a for a in self.alerts.all()
            if a.active and is_eligible(a.scheduling, now, self.default_tz)
        ]
        if not feed_items or not candidates:
            return []

        triggers: List[AlertTrigger] = []
        for item in feed_items:
            for alert in candidates:
                if not _source_allowed(item.source, alert.sources):
                    continue
                matched = match_item(item, alert.keywords)
                if not matched:
                    continue
                triggers.append(AlertTrigger(
                    id=generate_id("trigger", now),
                    alert_id=alert.id,
                    triggered_at=now,
                    feed_item=FeedItem.from_dict(item.to_dict()),
                    matched_keywords=matched,
                    priority=alert.priority,
                ))

        if not triggers:
            logger.debug(f"No matches in {len(feed_items)} items against {len(candidates)} alerts")
            return []

        logger.info(f"{len(triggers)} triggers from {len(feed_items)} items")
        self._apply_side_effects(triggers)
        return [t.copy() for t in triggers]

    def _coerce_item(self, item: Union[FeedItem, Mapping[str, Any]]) -> Optional[FeedItem]:
        if isinstance(item, FeedItem):
            return item
        try:
            return FeedItem.from_dict(item)
        except (AttributeError, TypeError) as e:
            logger.warning(f"Skipping malformed feed item {item!r}: {e}")
            return None

    def _apply_side_effects(self, triggers: List[AlertTrigger]):
        try:
            self.history.append(triggers)
        except Exception as e:
            logger.error(f"Failed to append {len(triggers)} triggers to history: {e}", exc_info=True)

        try:
            for trigger in triggers:
                alert = self.alerts.get(trigger.alert_id)
                if alert is None:
                    continue
                alert.trigger_count += 1
                if alert.last_triggered is None or trigger.triggered_at > alert.last_triggered:
                    alert.last_triggered = trigger.triggered_at
            self.alerts.save()
        except Exception as e:
            logger.error(f"Failed to update alert stats: {e}", exc_info=True)

        try:
            self.notifier.dispatch(triggers, self.alerts.all())
        except Exception as e:
            logger.error(f"Failed to dispatch notifications: {e}", exc_info=True)

        self.bus.publish([t.copy() for t in triggers])
        for trigger in triggers:
            self.bus.emit(AlertEvent(AlertEventType.ALERT_TRIGGERED, trigger.copy()))

    # ===========================================
    # Subscriptions
    # ===========================================

    def subscribe(self, callback: Callable[[List[AlertTrigger]], None]) -> Callable[[], None]:
        return self.bus.subscribe(callback)

    def subscribe_events(self, callback: Callable[[AlertEvent], None]) -> Callable[[], None]:
        return self.bus.subscribe_events(callback)

    # ===========================================
    # History and stats
    # ===========================================

    def get_alert_history(self, alert_id: Optional[str] = None, limit: Optional[int] = None) -> List[AlertTrigger]:
        """
        History, most recent first, optionally for one alert and capped at
        ``limit`` (negative limits count as 0). Returns copies.
        """
        entries = [t for t in self.history.entries() if alert_id is None or t.alert_id == alert_id]
        entries.reverse()
        if limit is not None:
            entries = entries[:max(int(limit), 0)]
        return [t.copy() for t in entries]

    def get_recent_triggers(self, alert_id: str, limit: int = 10) -> List[AlertTrigger]:
        return self.get_alert_history(alert_id=alert_id, limit=limit)

    def clear_alert_history(self, alert_id: Optional[str] = None) -> bool:
        """Clear history for one alert, or all history when ``alert_id`` is None."""
        if alert_id is None:
            return self.history.clear()
        removed = self.history.remove_alert(alert_id)
        logger.info(f"Cleared {removed} history entries for alert {alert_id}")
        return True

    def acknowledge_trigger(self, trigger_id: str) -> bool:
        for trigger in self.history.entries():
            if trigger.id != trigger_id:
                continue
            if trigger.acknowledged:
                return True
            acked = trigger.acknowledge(ensure_aware(self.clock()))
            self.history.update(acked)
            self.bus.emit(AlertEvent(AlertEventType.ALERT_ACKNOWLEDGED, trigger_id))
            return True
        return False

    def acknowledge_all(self, alert_id: Optional[str] = None) -> int:
        """Acknowledge every open trigger (optionally for one alert); returns the count."""
        now = ensure_aware(self.clock())
        entries = self.history.entries()
        acked_ids = []
        for i, trigger in enumerate(entries):
            if trigger.acknowledged or (alert_id is not None and trigger.alert_id != alert_id):
                continue
            entries[i] = trigger.acknowledge(now)
            acked_ids.append(trigger.id)
        if acked_ids:
            self.history.replace_all(entries)
            for trigger_id in acked_ids:
                self.bus.emit(AlertEvent(AlertEventType.ALERT_ACKNOWLEDGED, trigger_id))
        return len(acked_ids)

    def get_alert_stats(self) -> AlertStats:
        alerts = self.alerts.all()
        entries = self.history.entries()
        today = self._local(ensure_aware(self.clock())).date()
        triggers_today = sum(1 for t in entries if self._local(t.triggered_at).date() == today)
        return AlertStats(
            total_alerts=len(alerts),
            active_alerts=sum(1 for a in alerts if a.active),
            total_triggers=len(entries),
            triggers_today=triggers_today,
        )

    def _local(self, dt: datetime) -> datetime:
        dt = ensure_aware(dt)
        return dt.astimezone(self.default_tz) if self.default_tz is not None else dt.astimezone()

    # ===========================================
    # Import / export and notifications
    # ===========================================

    def export_data(self) -> Dict[str, List[Dict[str, Any]]]:
        """Alerts and history (oldest first) as plain dicts."""
        return {
            "alerts": [a.to_dict() for a in self.alerts.all()],
            "history": [t.to_dict() for t in self.history.entries()],
        }

    def import_data(self, data: Mapping[str, Any]) -> bool:
        """Replace alerts and/or history with ``data`` (as produced by export_data)."""
        try:
            alerts = [AlertConfig.from_dict(a) for a in data["alerts"]] if data.get("alerts") is not None else None
            history = [AlertTrigger.from_dict(t) for t in data["history"]] if data.get("history") is not None else None
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"Failed to import alert data: {e}", exc_info=True)
            return False

        ok = True
        if alerts is not None:
            ok = self.alerts.replace_all(alerts) and ok
        if history is not None:
            ok = self.history.replace_all(history) and ok
        return ok

    def test_notifications(self) -> bool:
        return self.notifier.test_notification()

    def get_notification_permission(self) -> bool:
        return self.notifier.permission_granted()

    def close(self):
        """Stop monitoring and wait for queued notification deliveries."""
        self.stop_monitoring()
        self.notifier.close()


def create_engine_from_config(config_path: str, **kwargs) -> AlertEngine:
    """
    Create an AlertEngine from a YAML/JSON config file.

    The ``alerts`` block may carry: db_path, history_limit, timezone,
    max_individual_notifications, auto_close_seconds, notifier_workers,
    webhook_timeout, smtp (dict), start_monitoring, and rules (alert
    definitions created on first run, matched by name).

    Args:
        config_path: Path to configuration file
        **kwargs: Passed through to AlertEngine (e.g. clock, notifier)

    Returns:
        Configured AlertEngine instance
    """
    import yaml
    from pathlib import Path

    config_file = Path(config_path)

    if config_file.suffix in (".yaml", ".yml"):
        with open(config_file) as f:
            config = yaml.safe_load(f) or {}
    elif config_file.suffix == ".json":
        import json
        with open(config_file) as f:
            config = json.load(f)
    else:
        raise ValueError(f"Unsupported config format: {config_file.suffix}")

    cfg = config.get("alerts", {}) or {}
    smtp = cfg.get("smtp") or {}
    settings = Settings.from_overrides(
        db_path=cfg.get("db_path"),
        history_limit=cfg.get("history_limit"),
        default_timezone=cfg.get("timezone"),
        max_individual_notifications=cfg.get("max_individual_notifications"),
        auto_close_seconds=cfg.get("auto_close_seconds"),
        notifier_workers=cfg.get("notifier_workers"),
        webhook_timeout=cfg.get("webhook_timeout"),
        start_monitoring=cfg.get("start_monitoring"),
        smtp_host=smtp.get("host"),
        smtp_port=smtp.get("port"),
        smtp_username=smtp.get("username"),
        smtp_password=smtp.get("password"),
        smtp_from_address=smtp.get("from_address"),
    )

    if "storage" not in kwargs:
        kwargs["storage"] = SqliteStorage(settings.db_path)
    engine = AlertEngine(settings=settings, **kwargs)

    existing = {a.name for a in engine.get_alerts()}
    for rule in cfg.get("rules", []) or []:
        if rule.get("name") in existing:
            continue
        engine.create_alert(rule)
        logger.info(f"Seeded alert {rule.get('name')!r} from {config_file.name}")

    if settings.start_monitoring:
        engine.start_monitoring()
    return engine
