import pytest

from feed_alerts.alerts.orchestration import AlertEngine
from feed_alerts.alerts.schema import AlertEventType, AlertPriority
from feed_alerts.alerts.storage import MemoryStorage
from feed_alerts.alerts.validation import AlertValidationError

from conftest import FIXED_NOW, make_item


def security_alert(**overrides):
    data = {"name": "Security", "keywords": ["breach", "leak"], "priority": "high"}
    data.update(overrides)
    return data


def test_breach_and_leak_trigger_once_per_item(engine):
    alert_id = engine.create_alert(security_alert())
    item = make_item(title="Major data breach at bank", description="Customer records leak online")

    triggers = engine.check_feed_items([item])

    assert len(triggers) == 1
    trigger = triggers[0]
    assert trigger.alert_id == alert_id
    assert trigger.matched_keywords == ["breach", "leak"]
    assert trigger.priority == AlertPriority.HIGH
    assert trigger.triggered_at == FIXED_NOW
    assert trigger.id.startswith("trigger_")

    alert = engine.get_alert(alert_id)
    assert alert.trigger_count == 1
    assert alert.last_triggered == FIXED_NOW
    assert [t.id for t in engine.get_alert_history()] == [trigger.id]


def test_created_alert_has_engine_fields(engine):
    alert_id = engine.create_alert(security_alert(triggerCount=99, id="mine"))
    alert = engine.get_alert(alert_id)
    assert alert_id.startswith("alert_")
    assert alert.trigger_count == 0
    assert alert.created_at == FIXED_NOW
    assert alert.active is True


def test_invalid_alert_is_rejected(engine):
    with pytest.raises(AlertValidationError):
        engine.create_alert({"name": "Empty", "keywords": []})
    assert engine.get_alerts() == []


def test_no_match_no_trigger(engine):
    engine.create_alert(security_alert())
    assert engine.check_feed_items([make_item(title="Earnings beat estimates")]) == []
    assert engine.get_alert_history() == []


def test_not_monitoring_is_a_no_op(engine):
    engine.create_alert(security_alert())
    engine.stop_monitoring()
    assert engine.is_currently_monitoring() is False
    assert engine.check_feed_items([make_item(title="breach")]) == []


def test_inactive_alert_does_not_fire(engine):
    alert_id = engine.create_alert(security_alert())
    assert engine.toggle_alert(alert_id) is True
    assert engine.get_alert(alert_id).active is False
    assert engine.check_feed_items([make_item(title="breach")]) == []


def test_snoozed_alert_fires_after_expiry(engine, clock):
    alert_id = engine.create_alert(security_alert())
    assert engine.snooze_alert(alert_id, 60) is True
    assert engine.check_feed_items([make_item(title="breach")]) == []

    clock.advance(minutes=61)
    assert len(engine.check_feed_items([make_item(title="breach")])) == 1


def test_outside_active_hours(engine, clock):
    engine.create_alert(security_alert(scheduling={"activeHours": {"start": "09:00", "end": "17:00"},
                                                   "timezone": "UTC"}))
    # clock is at 20:00
    assert engine.check_feed_items([make_item(title="breach")]) == []

    clock.now = FIXED_NOW.replace(hour=10)
    assert len(engine.check_feed_items([make_item(title="breach")])) == 1


def test_source_filter(engine):
    engine.create_alert(security_alert(sources=["Reuters"]))
    assert engine.check_feed_items([make_item(title="breach", source="Bloomberg")]) == []
    assert len(engine.check_feed_items([make_item(title="breach", source=" reuters ")])) == 1


def test_every_matching_pair_triggers(engine):
    engine.create_alert(security_alert())
    engine.create_alert({"name": "Banks", "keywords": ["bank"]})
    items = [make_item(title="bank breach"), make_item(title="bank earnings"), make_item(title="weather")]

    triggers = engine.check_feed_items(items)
    assert len(triggers) == 3


def test_malformed_items_are_skipped(engine):
    engine.create_alert(security_alert())
    triggers = engine.check_feed_items([None, make_item(title="breach")])
    assert len(triggers) == 1


def test_clear_history_for_one_alert(engine):
    a1 = engine.create_alert(security_alert())
    a2 = engine.create_alert({"name": "Banks", "keywords": ["bank"]})
    engine.check_feed_items([make_item(title="bank breach")])

    assert engine.clear_alert_history(a1) is True
    assert [t.alert_id for t in engine.get_alert_history()] == [a2]
    assert engine.get_alert_history(alert_id=a1) == []

    engine.clear_alert_history()
    assert engine.get_alert_history() == []


def test_history_most_recent_first_and_limit(engine, clock):
    alert_id = engine.create_alert(security_alert())
    for n in range(3):
        engine.check_feed_items([make_item(title=f"breach {n}")])
        clock.advance(minutes=1)

    titles = [t.feed_item.title for t in engine.get_alert_history(alert_id)]
    assert titles == ["breach 2", "breach 1", "breach 0"]
    assert len(engine.get_alert_history(limit=2)) == 2
    assert len(engine.get_recent_triggers(alert_id, limit=1)) == 1


def test_stats_consistency(engine, clock):
    a1 = engine.create_alert(security_alert())
    engine.create_alert({"name": "Banks", "keywords": ["bank"]})
    engine.toggle_alert(a1)
    engine.toggle_alert(a1)

    clock.now = FIXED_NOW.replace(day=11)
    engine.check_feed_items([make_item(title="bank breach")])
    clock.now = FIXED_NOW
    engine.check_feed_items([make_item(title="breach")])

    stats = engine.get_alert_stats()
    assert stats.total_alerts == 2
    assert stats.active_alerts == 2
    assert stats.total_triggers == len(engine.get_alert_history()) == 3
    assert stats.triggers_today == 1
    assert sum(a.trigger_count for a in engine.get_alerts()) == stats.total_triggers


def test_last_triggered_is_not_moved_backwards(engine, clock):
    alert_id = engine.create_alert(security_alert())
    engine.check_feed_items([make_item(title="breach")])
    clock.now = FIXED_NOW.replace(hour=8)
    engine.check_feed_items([make_item(title="breach")])

    alert = engine.get_alert(alert_id)
    assert alert.trigger_count == 2
    assert alert.last_triggered == FIXED_NOW


def test_history_limit_evicts_oldest(storage, notifier, clock):
    engine = AlertEngine(storage=storage, notifier=notifier, clock=clock, default_tz="UTC", history_limit=5)
    engine.start_monitoring()
    engine.create_alert(security_alert())
    engine.check_feed_items([make_item(title=f"breach {n}") for n in range(8)])

    history = engine.get_alert_history()
    assert len(history) == 5
    assert history[-1].feed_item.title == "breach 3"
    # trigger count keeps counting past eviction
    assert engine.get_alerts()[0].trigger_count == 8


def test_update_alert_keeps_identity(engine):
    alert_id = engine.create_alert(security_alert())
    created = engine.get_alert(alert_id)

    assert engine.update_alert(alert_id, {"id": "other", "name": "Renamed", "keywords": ["ransom"]}) is True
    updated = engine.get_alert(alert_id)
    assert updated.id == alert_id
    assert updated.created_at == created.created_at
    assert updated.name == "Renamed"
    assert updated.keywords == ["ransom"]
    assert updated.priority == AlertPriority.HIGH

    assert engine.update_alert("missing", {"name": "x"}) is False
    with pytest.raises(AlertValidationError):
        engine.update_alert(alert_id, {"keywords": []})


def test_delete_alert_keeps_or_purges_history(engine):
    a1 = engine.create_alert(security_alert())
    a2 = engine.create_alert({"name": "Banks", "keywords": ["bank"]})
    engine.check_feed_items([make_item(title="bank breach")])

    assert engine.delete_alert(a1) is True
    assert engine.get_alert(a1) is None
    assert len(engine.get_alert_history(alert_id=a1)) == 1

    assert engine.delete_alert(a2, purge_history=True) is True
    assert engine.get_alert_history(alert_id=a2) == []
    assert engine.delete_alert(a2) is False


def test_subscribers_receive_batches(engine):
    batches = []

    def broken(batch):
        raise RuntimeError("subscriber bug")

    engine.subscribe(broken)
    unsubscribe = engine.subscribe(batches.append)
    engine.create_alert(security_alert())

    triggers = engine.check_feed_items([make_item(title="breach"), make_item(title="leak")])
    assert batches == [triggers]

    unsubscribe()
    engine.check_feed_items([make_item(title="breach")])
    assert len(batches) == 1


def test_lifecycle_events(engine):
    events = []
    engine.subscribe_events(events.append)

    alert_id = engine.create_alert(security_alert())
    engine.snooze_alert(alert_id, 0)
    engine.check_feed_items([make_item(title="breach")])
    engine.delete_alert(alert_id)

    assert [e.type for e in events] == [
        AlertEventType.ALERT_CREATED,
        AlertEventType.ALERT_SNOOZED,
        AlertEventType.ALERT_TRIGGERED,
        AlertEventType.ALERT_DELETED,
    ]


def test_notifications_are_throttled(engine, notifier, channels):
    engine.create_alert(security_alert())
    engine.check_feed_items([make_item(title=f"breach {n}") for n in range(5)])
    assert notifier.flush(timeout=5)

    sent = channels["browser"].sent
    assert len(sent) == 4
    assert sent[-1].body == "2 additional alerts triggered. Check the dashboard for details."


def test_storage_failure_does_not_stop_the_pass(notifier, clock):
    class FlakyStorage(MemoryStorage):
        fail = False

        def set(self, key, value):
            if self.fail:
                raise OSError("disk full")
            super().set(key, value)

    storage = FlakyStorage()
    engine = AlertEngine(storage=storage, notifier=notifier, clock=clock, default_tz="UTC")
    engine.start_monitoring()
    engine.create_alert(security_alert())
    batches = []
    engine.subscribe(batches.append)

    storage.fail = True
    triggers = engine.check_feed_items([make_item(title="breach")])

    assert len(triggers) == 1
    assert batches == [triggers]
    # in-memory state still reflects the pass
    assert engine.get_alerts()[0].trigger_count == 1


def test_state_survives_a_new_engine(storage, notifier, clock):
    first = AlertEngine(storage=storage, notifier=notifier, clock=clock, default_tz="UTC")
    first.start_monitoring()
    alert_id = first.create_alert(security_alert())
    first.check_feed_items([make_item(title="breach")])

    second = AlertEngine(storage=storage, notifier=notifier, clock=clock, default_tz="UTC")
    assert second.get_alert(alert_id).trigger_count == 1
    assert len(second.get_alert_history()) == 1
    assert second.is_currently_monitoring() is False


def test_acknowledge(engine):
    alert_id = engine.create_alert(security_alert())
    triggers = engine.check_feed_items([make_item(title="breach"), make_item(title="leak")])

    assert engine.acknowledge_trigger(triggers[0].id) is True
    assert engine.acknowledge_trigger("nope") is False
    history = {t.id: t for t in engine.get_alert_history()}
    assert history[triggers[0].id].acknowledged is True
    assert history[triggers[0].id].acknowledged_at == FIXED_NOW
    assert history[triggers[1].id].acknowledged is False

    assert engine.acknowledge_all(alert_id) == 1
    assert engine.acknowledge_all() == 0


def test_export_import_round_trip(engine, notifier, clock):
    engine.create_alert(security_alert())
    engine.check_feed_items([make_item(title="breach")])
    exported = engine.export_data()

    other = AlertEngine(storage=MemoryStorage(), notifier=notifier, clock=clock, default_tz="UTC")
    assert other.import_data(exported) is True
    assert other.export_data() == exported

    assert other.import_data({"alerts": [{"name": "no id"}]}) is False


def test_initialize_and_permission(storage, clock):
    from feed_alerts.alerts.delivery import Notifier, NotificationHost

    host = NotificationHost(permission=True)
    notifier = Notifier(host=host, max_workers=1)
    engine = AlertEngine(storage=storage, notifier=notifier, clock=clock)
    try:
        assert engine.initialize() is True
        assert engine.is_currently_monitoring() is True
        assert engine.get_notification_permission() is True
        assert engine.test_notifications() is True
    finally:
        engine.close()
    assert engine.is_currently_monitoring() is False
    assert host.shown[-1].title == "Test Notification"


@pytest.mark.parametrize("days", [[7, 9], ["mon"]])
def test_invalid_active_days_are_rejected(engine, days):
    with pytest.raises(AlertValidationError) as exc:
        engine.create_alert(security_alert(scheduling={"activeDays": days}))
    assert "scheduling" in exc.value.errors
    assert engine.get_alerts() == []

    alert_id = engine.create_alert(security_alert())
    with pytest.raises(AlertValidationError):
        engine.update_alert(alert_id, {"scheduling": {"activeDays": days}})
    assert engine.get_alert(alert_id).scheduling.active_days is None


def test_history_limit_is_clamped(engine):
    engine.create_alert(security_alert())
    engine.check_feed_items([make_item(title="breach")])

    assert len(engine.get_alert_history(limit=None)) == 1
    assert engine.get_alert_history(limit=0) == []
    assert engine.get_alert_history(limit=-1) == []


def test_returned_triggers_are_copies(engine):
    engine.create_alert(security_alert())
    triggers = engine.check_feed_items([make_item(title="breach")])

    triggers[0].acknowledged = True
    engine.get_alert_history()[0].acknowledged = True

    assert engine.get_alert_history()[0].acknowledged is False
    assert engine.acknowledge_all() == 1


def test_ids_use_the_engine_clock(engine):
    from feed_alerts.utils.time_utils import epoch_ms

    alert_id = engine.create_alert(security_alert())
    triggers = engine.check_feed_items([make_item(title="breach")])

    stamp = str(epoch_ms(FIXED_NOW))
    assert alert_id.split("_")[1] == stamp
    assert triggers[0].id.split("_")[1] == stamp
