# SPDX-License-Identifier: MIT
# src/feed_alerts/alerts/delivery.py
"""
Notification dispatch for alert triggers (browser, sound, email, webhook).

Deliveries are handed to a small worker pool and never awaited by the
caller, so a slow SMTP server or webhook cannot hold up a monitoring pass.
"""
from __future__ import annotations
import smtplib
import requests
import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, Any, Callable, List, Optional, Sequence

from .schema import AlertConfig, AlertPriority, AlertTrigger

logger = logging.getLogger(__name__)

DEFAULT_MAX_INDIVIDUAL = 3
DEFAULT_AUTO_CLOSE_SECONDS = 5.0

CHANNEL_BROWSER = "browser"
CHANNEL_SOUND = "sound"
CHANNEL_EMAIL = "email"
CHANNEL_WEBHOOK = "webhook"


@dataclass
class Notification:
    """One user-facing notification, either for a single trigger or a summary."""
    title: str
    body: str
    priority: AlertPriority
    tag: str
    require_interaction: bool = False
    auto_close_seconds: Optional[float] = None
    channels: List[str] = field(default_factory=list)
    alert_id: Optional[str] = None
    trigger: Optional[AlertTrigger] = None
    sound_file: Optional[str] = None
    email: Optional[str] = None
    webhook_url: Optional[str] = None
    is_summary: bool = False
    data: Dict[str, Any] = field(default_factory=dict)


def default_sound_for_priority(priority: AlertPriority) -> str:
    return f"sounds/alert-{AlertPriority.coerce(priority).value}.mp3"


class NotificationHost:
    """
    Host platform hooks for on-screen notifications.

    The engine only asks whether permission is granted and hands over
    notifications to show; embedders replace this with their UI layer.
    The default keeps shown notifications in memory and logs them.
    """

    def __init__(self, permission: bool = True):
        self._permission = permission
        self.shown: List[Notification] = []

    def permission_granted(self) -> bool:
        return self._permission

    def request_permission(self) -> bool:
        return self._permission

    def show(self, notification: Notification) -> None:
        self.shown.append(notification)
        logger.info(f"Notification shown: {notification.title} | {notification.body}")


class BrowserChannel:
    name = CHANNEL_BROWSER

    def __init__(self, host: NotificationHost):
        self.host = host

    def send(self, notification: Notification) -> None:
        if not self.host.permission_granted():
            logger.debug(f"Notification permission not granted, dropping {notification.tag}")
            return
        self.host.show(notification)


class SoundChannel:
    name = CHANNEL_SOUND

    def __init__(self, player: Optional[Callable[[str], None]] = None):
        self.player = player

    def send(self, notification: Notification) -> None:
        sound = notification.sound_file or default_sound_for_priority(notification.priority)
        if self.player is None:
            logger.info(f"Sound alert (no player configured): {sound}")
            return
        self.player(sound)


class EmailChannel:
    name = CHANNEL_EMAIL

    def __init__(self, smtp_config: Optional[Dict[str, Any]] = None):
        """
        Args:
            smtp_config: SMTP configuration dict with keys:
                         host, port, username, password, from_address
        """
        self.smtp_config = smtp_config or {}

    def send(self, notification: Notification) -> None:
        if not self.smtp_config:
            logger.warning("SMTP not configured, skipping email delivery")
            return

        if not notification.email:
            logger.warning(f"No email address for alert {notification.alert_id}")
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = notification.title
        msg["From"] = self.smtp_config.get("from_address", "alerts@feed-alerts.local")
        msg["To"] = notification.email
        msg.attach(MIMEText(render_text_email(notification), "plain"))

        with smtplib.SMTP(
            self.smtp_config.get("host", "localhost"),
            int(self.smtp_config.get("port", 587))
        ) as server:
            server.starttls()
            if self.smtp_config.get("username"):
                server.login(
                    self.smtp_config["username"],
                    self.smtp_config.get("password", "")
                )
            server.send_message(msg)

        logger.info(f"Email alert sent to {notification.email} for {notification.alert_id}")


class WebhookChannel:
    name = CHANNEL_WEBHOOK

    def __init__(self, timeout: float = 10):
        self.timeout = timeout

    def send(self, notification: Notification) -> None:
        if not notification.webhook_url:
            logger.warning(f"No webhook URL for alert {notification.alert_id}")
            return

        payload = {
            "title": notification.title,
            "body": notification.body,
            "priority": notification.priority.value,
            "alertId": notification.alert_id,
            "trigger": notification.trigger.to_dict() if notification.trigger else None,
        }
        response = requests.post(
            notification.webhook_url,
            json=payload,
            timeout=self.timeout,
            headers={
                "Content-Type": "application/json",
                "User-Agent": "FeedAlerts-Notifier/1.0"
            }
        )
        response.raise_for_status()
        logger.info(f"Webhook alert sent to {notification.webhook_url} for {notification.alert_id}")


def render_text_email(notification: Notification) -> str:
    """Render plain text email body."""
    lines = [notification.body, ""]
    trigger = notification.trigger
    if trigger is not None:
        item = trigger.feed_item
        lines.append(f"Title: {item.title}")
        lines.append(f"Source: {item.source}")
        if item.pub_date:
            lines.append(f"Published: {item.pub_date}")
        if item.link:
            lines.append(f"\nRead more: {item.link}")
        lines.append(f"\nMatched keywords: {', '.join(trigger.matched_keywords)}")
        lines.append(f"Priority: {trigger.priority.value}")

    lines.extend([
        "",
        "---",
        "This is an automated alert from the feed alert engine.",
    ])
    return "\n".join(lines)


class Notifier:
    """
    Turns a batch of triggers into notifications and queues their delivery.

    Per call, the first ``max_individual`` triggers are notified one by one
    on the channels their alert enables; any remainder is collapsed into a
    single summary notification.
    """

    def __init__(
        self,
        host: Optional[NotificationHost] = None,
        smtp_config: Optional[Dict[str, Any]] = None,
        sound_player: Optional[Callable[[str], None]] = None,
        webhook_timeout: float = 10,
        max_individual: int = DEFAULT_MAX_INDIVIDUAL,
        auto_close_seconds: float = DEFAULT_AUTO_CLOSE_SECONDS,
        max_workers: int = 4,
        channels: Optional[Dict[str, Any]] = None,
    ):
        self.host = host or NotificationHost()
        self.max_individual = max_individual
        self.auto_close_seconds = auto_close_seconds
        self.channels: Dict[str, Any] = {
            CHANNEL_BROWSER: BrowserChannel(self.host),
            CHANNEL_SOUND: SoundChannel(sound_player),
            CHANNEL_EMAIL: EmailChannel(smtp_config),
            CHANNEL_WEBHOOK: WebhookChannel(webhook_timeout),
        }
        if channels:
            self.channels.update(channels)

        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="notifier")
        self._pending: List[Future] = []

    # ---- permission ------------------------------------------------------

    def permission_granted(self) -> bool:
        try:
            return bool(self.host.permission_granted())
        except Exception as e:
            logger.error(f"Failed to query notification permission: {e}", exc_info=True)
            return False

    def request_permission(self) -> bool:
        try:
            return bool(self.host.request_permission())
        except Exception as e:
            logger.error(f"Failed to request notification permission: {e}", exc_info=True)
            return False

    # ---- building --------------------------------------------------------

    @staticmethod
    def enabled_channels(alert: AlertConfig) -> List[str]:
        settings = alert.notifications
        enabled = []
        if settings.browser:
            enabled.append(CHANNEL_BROWSER)
        if settings.sound:
            enabled.append(CHANNEL_SOUND)
        if settings.email:
            enabled.append(CHANNEL_EMAIL)
        if settings.webhook:
            enabled.append(CHANNEL_WEBHOOK)
        return enabled

    def build_notification(self, alert: AlertConfig, trigger: AlertTrigger) -> Notification:
        settings = alert.notifications
        critical = alert.priority == AlertPriority.CRITICAL
        body = settings.custom_message or (
            f'Keyword "{", ".join(trigger.matched_keywords)}" detected in {trigger.feed_item.source}'
        )
        return Notification(
            title=f"ALERT: {alert.name}",
            body=body,
            priority=alert.priority,
            tag=f"alert-{alert.id}",
            require_interaction=critical,
            auto_close_seconds=None if critical else self.auto_close_seconds,
            channels=self.enabled_channels(alert),
            alert_id=alert.id,
            trigger=trigger,
            sound_file=settings.sound_file,
            email=settings.email,
            webhook_url=settings.webhook,
            data={
                "alertId": alert.id,
                "triggerId": trigger.id,
                "source": trigger.feed_item.source,
                "keywords": list(trigger.matched_keywords),
                "link": trigger.feed_item.link,
            },
        )

    def build_summary(self, additional_count: int) -> Notification:
        plural = "s" if additional_count > 1 else ""
        return Notification(
            title="Additional Alerts",
            body=f"{additional_count} additional alert{plural} triggered. Check the dashboard for details.",
            priority=AlertPriority.MEDIUM,
            tag="alert-summary",
            auto_close_seconds=self.auto_close_seconds,
            channels=[CHANNEL_BROWSER],
            is_summary=True,
            data={"additionalCount": additional_count},
        )

    # ---- dispatch --------------------------------------------------------

    def dispatch(self, triggers: Sequence[AlertTrigger], alerts: Sequence[AlertConfig]) -> List[Notification]:
        """
        Queue notifications for ``triggers`` and return what was planned.

        Delivery happens on the worker pool; use ``flush()`` to wait for it.
        """
        if not triggers:
            return []

        alerts_by_id = {a.id: a for a in alerts}
        planned: List[Notification] = []

        for trigger in triggers[:self.max_individual]:
            alert = alerts_by_id.get(trigger.alert_id)
            if alert is None:
                logger.warning(f"No alert {trigger.alert_id} for trigger {trigger.id}, skipping notification")
                continue
            notification = self.build_notification(alert, trigger)
            planned.append(notification)
            for channel_name in notification.channels:
                self._submit(channel_name, notification)

        throttled = len(triggers) - self.max_individual
        if throttled > 0:
            summary = self.build_summary(throttled)
            planned.append(summary)
            self._submit(CHANNEL_BROWSER, summary)
            logger.info(f"Throttled {throttled} notifications into a summary")

        return planned

    def _submit(self, channel_name: str, notification: Notification):
        channel = self.channels.get(channel_name)
        if channel is None:
            logger.warning(f"Unknown delivery channel: {channel_name}")
            return
        try:
            future = self._executor.submit(self._deliver, channel, notification)
        except RuntimeError as e:
            # executor already shut down
            logger.error(f"Cannot queue {channel_name} notification {notification.tag}: {e}")
            return
        self._pending = [f for f in self._pending if not f.done()]
        self._pending.append(future)

    @staticmethod
    def _deliver(channel, notification: Notification) -> bool:
        try:
            channel.send(notification)
            return True
        except Exception as e:
            logger.error(
                f"Failed to deliver notification {notification.tag} via {channel.name}: {e}",
                exc_info=True
            )
            return False

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued deliveries; True if all finished within ``timeout``."""
        pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        self._pending = list(not_done)
        return not not_done

    def close(self):
        self._executor.shutdown(wait=True)

    def test_notification(self) -> bool:
        """Send a test notification through the browser channel."""
        if not self.permission_granted() and not self.request_permission():
            return False
        notification = Notification(
            title="Test Notification",
            body="Feed alert notifications are working correctly.",
            priority=AlertPriority.LOW,
            tag="test-notification",
            auto_close_seconds=3,
            channels=[CHANNEL_BROWSER],
        )
        return self._deliver(self.channels[CHANNEL_BROWSER], notification)
