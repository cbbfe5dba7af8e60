from datetime import datetime, timezone

from feed_alerts.config import Settings
from feed_alerts.utils.time_utils import parse_timestamp, ensure_aware, epoch_ms, resolve_zone, to_iso


def test_from_overrides_ignores_none_and_unknown_keys():
    base = Settings()
    s = Settings.from_overrides(history_limit=10, db_path=None, not_a_field=1)
    assert s.history_limit == 10
    assert s.db_path == base.db_path


def test_smtp_config_empty_without_host():
    assert Settings.from_overrides(smtp_host="").smtp_config() == {}
    cfg = Settings.from_overrides(smtp_host="smtp.example.com", smtp_port=2525).smtp_config()
    assert cfg["host"] == "smtp.example.com"
    assert cfg["port"] == 2525


def test_parse_timestamp_forms():
    expected = datetime(2025, 3, 12, 20, 0, tzinfo=timezone.utc)
    assert parse_timestamp("2025-03-12T20:00:00Z") == expected
    assert parse_timestamp("2025-03-12T20:00:00") == expected
    assert parse_timestamp(epoch_ms(expected)) == expected
    assert parse_timestamp(expected) == expected
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None
    assert parse_timestamp("garbage") is None


def test_ensure_aware_and_iso():
    naive = datetime(2025, 3, 12, 20, 0)
    assert ensure_aware(naive).tzinfo is timezone.utc
    assert to_iso(naive) == "2025-03-12T20:00:00+00:00"
    assert to_iso(None) is None


def test_resolve_zone():
    assert resolve_zone("UTC") is not None
    assert resolve_zone("Nowhere/Special") is None
    assert resolve_zone("") is None
