# SPDX-License-Identifier: MIT
# src/feed_alerts/alerts/schema.py
"""
Data model for alert rules, trigger records and the feed items they match.

All records round-trip through plain dicts (camelCase keys, ISO-8601
timestamps) so the stores can persist them as JSON without loss.
"""
from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Any, List, Optional, Mapping

from feed_alerts.utils.time_utils import to_iso, parse_timestamp


class AlertPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def coerce(cls, value: Any) -> "AlertPriority":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.MEDIUM


class AlertEventType(str, Enum):
    ALERT_CREATED = "ALERT_CREATED"
    ALERT_UPDATED = "ALERT_UPDATED"
    ALERT_DELETED = "ALERT_DELETED"
    ALERT_TRIGGERED = "ALERT_TRIGGERED"
    ALERT_ACKNOWLEDGED = "ALERT_ACKNOWLEDGED"
    ALERT_SNOOZED = "ALERT_SNOOZED"


@dataclass
class FeedItem:
    """Normalized item handed over by the feed pipeline."""
    title: str
    link: str = ""
    source: str = ""
    pub_date: str = ""
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FeedItem":
        return cls(
            title=str(data.get("title") or ""),
            description=data.get("description"),
            link=str(data.get("link") or ""),
            source=str(data.get("source") or ""),
            pub_date=str(data.get("pubDate") or data.get("pub_date") or ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "title": self.title,
            "link": self.link,
            "source": self.source,
            "pubDate": self.pub_date,
        }
        if self.description is not None:
            d["description"] = self.description
        return d

    @property
    def text(self) -> str:
        return f"{self.title or ''} {self.description or ''}"


@dataclass
class ActiveHours:
    start: str  # HH:MM
    end: str    # HH:MM


@dataclass
class AlertScheduling:
    active_hours: Optional[ActiveHours] = None
    active_days: Optional[List[int]] = None  # 0 = Sunday ... 6 = Saturday
    timezone: Optional[str] = None
    snooze_until: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "AlertScheduling":
        if not data:
            return cls()
        hours = data.get("activeHours")
        days = data.get("activeDays")
        return cls(
            active_hours=ActiveHours(str(hours.get("start", "")), str(hours.get("end", "")))
            if isinstance(hours, Mapping) else None,
            active_days=[int(d) for d in days] if days is not None else None,
            timezone=data.get("timezone"),
            snooze_until=parse_timestamp(data.get("snoozeUntil")),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {}
        if self.active_hours is not None:
            d["activeHours"] = {"start": self.active_hours.start, "end": self.active_hours.end}
        if self.active_days is not None:
            d["activeDays"] = list(self.active_days)
        if self.timezone is not None:
            d["timezone"] = self.timezone
        if self.snooze_until is not None:
            d["snoozeUntil"] = to_iso(self.snooze_until)
        return d


@dataclass
class NotificationSettings:
    browser: bool = True
    sound: bool = False
    sound_file: Optional[str] = None
    email: Optional[str] = None
    webhook: Optional[str] = None
    custom_message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "NotificationSettings":
        if not data:
            return cls()
        return cls(
            browser=bool(data.get("browser", True)),
            sound=bool(data.get("sound", False)),
            sound_file=data.get("soundFile"),
            email=data.get("email"),
            webhook=data.get("webhook"),
            custom_message=data.get("customMessage"),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"browser": self.browser, "sound": self.sound}
        for key, value in (
            ("soundFile", self.sound_file),
            ("email", self.email),
            ("webhook", self.webhook),
            ("customMessage", self.custom_message),
        ):
            if value is not None:
                d[key] = value
        return d


@dataclass
class AlertConfig:
    id: str
    name: str
    keywords: List[str]
    created_at: datetime
    priority: AlertPriority = AlertPriority.MEDIUM
    description: Optional[str] = None
    sources: List[str] = field(default_factory=list)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    scheduling: AlertScheduling = field(default_factory=AlertScheduling)
    active: bool = True
    last_triggered: Optional[datetime] = None
    trigger_count: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlertConfig":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            description=data.get("description"),
            keywords=list(data.get("keywords") or []),
            sources=list(data.get("sources") or []),
            priority=AlertPriority.coerce(data.get("priority", "medium")),
            notifications=NotificationSettings.from_dict(data.get("notifications")),
            scheduling=AlertScheduling.from_dict(data.get("scheduling")),
            active=bool(data.get("active", True)),
            created_at=parse_timestamp(data.get("createdAt")) or parse_timestamp(0),
            last_triggered=parse_timestamp(data.get("lastTriggered")),
            trigger_count=int(data.get("triggerCount", 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "keywords": list(self.keywords),
            "sources": list(self.sources),
            "priority": self.priority.value,
            "notifications": self.notifications.to_dict(),
            "scheduling": self.scheduling.to_dict(),
            "active": self.active,
            "createdAt": to_iso(self.created_at),
            "triggerCount": self.trigger_count,
        }
        if self.description is not None:
            d["description"] = self.description
        if self.last_triggered is not None:
            d["lastTriggered"] = to_iso(self.last_triggered)
        return d

    def copy(self) -> "AlertConfig":
        return AlertConfig.from_dict(self.to_dict())


@dataclass
class AlertTrigger:
    id: str
    alert_id: str
    triggered_at: datetime
    feed_item: FeedItem
    matched_keywords: List[str]
    priority: AlertPriority
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlertTrigger":
        return cls(
            id=str(data["id"]),
            alert_id=str(data["alertId"]),
            triggered_at=parse_timestamp(data.get("triggeredAt")) or parse_timestamp(0),
            feed_item=FeedItem.from_dict(data.get("feedItem") or {}),
            matched_keywords=list(data.get("matchedKeywords") or []),
            priority=AlertPriority.coerce(data.get("priority", "medium")),
            acknowledged=bool(data.get("acknowledged", False)),
            acknowledged_at=parse_timestamp(data.get("acknowledgedAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "alertId": self.alert_id,
            "triggeredAt": to_iso(self.triggered_at),
            "feedItem": self.feed_item.to_dict(),
            "matchedKeywords": list(self.matched_keywords),
            "priority": self.priority.value,
            "acknowledged": self.acknowledged,
        }
        if self.acknowledged_at is not None:
            d["acknowledgedAt"] = to_iso(self.acknowledged_at)
        return d

    def acknowledge(self, when: datetime) -> "AlertTrigger":
        return replace(self, acknowledged=True, acknowledged_at=when)

    def copy(self) -> "AlertTrigger":
        return AlertTrigger.from_dict(self.to_dict())


@dataclass
class AlertStats:
    total_alerts: int
    active_alerts: int
    total_triggers: int
    triggers_today: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "totalAlerts": self.total_alerts,
            "activeAlerts": self.active_alerts,
            "totalTriggers": self.total_triggers,
            "triggersToday": self.triggers_today,
        }


@dataclass
class AlertEvent:
    """Typed lifecycle event carried on the subscriber bus."""
    type: AlertEventType
    payload: Any = None
