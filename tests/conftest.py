# Ensure `src/` is on sys.path so tests can import `feed_alerts` without requiring editable install
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

HERE = os.path.dirname(__file__)
SRC = os.path.abspath(os.path.join(HERE, "..", "src"))
if os.path.isdir(SRC) and SRC not in sys.path:
    sys.path.insert(0, SRC)

# Wednesday evening, UTC
FIXED_NOW = datetime(2025, 3, 12, 20, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingChannel:
    """Delivery channel that keeps what it was asked to send (or fails)."""

    def __init__(self, name, fail=False):
        self.name = name
        self.fail = fail
        self.sent = []

    def send(self, notification):
        if self.fail:
            raise RuntimeError(f"{self.name} is down")
        self.sent.append(notification)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    from feed_alerts.alerts.storage import MemoryStorage
    return MemoryStorage()


@pytest.fixture
def channels():
    return {name: RecordingChannel(name) for name in ("browser", "sound", "email", "webhook")}


@pytest.fixture
def notifier(channels):
    from feed_alerts.alerts.delivery import Notifier
    n = Notifier(channels=channels, max_workers=1)
    yield n
    n.close()


@pytest.fixture
def engine(storage, notifier, clock):
    from feed_alerts.alerts.orchestration import AlertEngine
    eng = AlertEngine(storage=storage, notifier=notifier, clock=clock, default_tz="UTC")
    eng.start_monitoring()
    yield eng
    eng.stop_monitoring()


def make_item(title="Market update", description=None, source="Reuters", link="https://example.com/a"):
    """Helper to build a feed item dict with sane defaults."""
    item = {"title": title, "link": link, "source": source, "pubDate": "2025-03-12T19:55:00Z"}
    if description is not None:
        item["description"] = description
    return item
