"""
Alert Engine Tests
==================
Tests price alerts:
1. Trigger-once scenario (54k / 56k / 57k)
2. Concurrent ticks trigger an alert exactly once
3. Persistence and reload (memory and JSON file stores)
4. Update / remove / clear
5. Store and sink failures stay out of the tick path
6. Slow store writes never replace a newer snapshot

Run with pytest or directly:
    python -m src.simcore.test_alert_engine
"""

import json
import tempfile
import threading
import time
from datetime import datetime
from pathlib import Path

import pytest

from src.simcore.alert_engine import STORE_KEY, AlertEngine
from src.simcore.alert_store import AlertStore, InMemoryAlertStore, JsonFileAlertStore
from src.simcore.errors import ValidationError
from src.simcore.notifications import InMemoryNotificationSink, Notification, NotificationSink
from src.simcore.sim_config import SimConfig


class FailingStore(AlertStore):
    def get(self, key):
        raise IOError("store offline")

    def put(self, key, value):
        raise IOError("store offline")


class SlowSecondPutStore(InMemoryAlertStore):
    """Holds its second put for `delay` seconds"""

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay
        self.slow_put_started = threading.Event()
        self._calls = 0
        self._calls_lock = threading.Lock()

    def put(self, key, value):
        with self._calls_lock:
            self._calls += 1
            call = self._calls
        if call == 2:
            self.slow_put_started.set()
            time.sleep(self.delay)
        super().put(key, value)


class FailingSink(NotificationSink):
    def notify(self, event):
        raise ConnectionError("sink offline")


def make_engine(store=None, sink=None) -> AlertEngine:
    config = SimConfig.from_dict({'external_timeout_seconds': 1.0})
    return AlertEngine(config, store=store or InMemoryAlertStore(), sink=sink or InMemoryNotificationSink())


def test_trigger_once_scenario():
    """Test 1: 'above 55000' fires on 56000 and never again"""
    print("\n--- Test 1: Trigger Once ---")
    sink = InMemoryNotificationSink()
    engine = make_engine(sink=sink)
    alert = engine.create_alert('BTCUSDT', 'above', 55000.0)

    assert engine.check_alerts('BTCUSDT', 54000.0) == []
    assert not alert.triggered

    fired = engine.check_alerts('BTCUSDT', 56000.0, datetime(2024, 1, 1, 12, 0))
    assert [a.id for a in fired] == [alert.id]
    assert alert.triggered
    assert not alert.active
    assert alert.triggered_at == datetime(2024, 1, 1, 12, 0)

    assert engine.check_alerts('BTCUSDT', 57000.0) == []
    assert len(sink.notifications) == 1
    event = sink.notifications[0]
    assert event.type == 'alert'
    assert event.title == 'Alert triggered: BTCUSDT'
    assert event.price == 56000.0

    print(f"  Notification: {event.message}")
    print("  ✓ Alert fired once")


def test_below_condition_and_symbol_case():
    """Test 2: 'below' uses <= and symbols are upper-cased"""
    print("\n--- Test 2: Below Condition ---")
    engine = make_engine()
    alert = engine.create_alert('ethusdt', 'below', 3000.0)
    assert alert.symbol == 'ETHUSDT'

    assert engine.check_alerts('BTCUSDT', 2000.0) == []
    assert engine.check_alerts('ETHUSDT', 3000.01) == []
    assert len(engine.check_alerts('ETHUSDT', 3000.0)) == 1

    print("  ✓ Below condition working")


def test_concurrent_ticks_trigger_once():
    """Test 3: Many threads racing on one symbol trigger exactly once"""
    print("\n--- Test 3: Concurrent Trigger ---")
    sink = InMemoryNotificationSink()
    engine = make_engine(sink=sink)
    engine.create_alert('BTCUSDT', 'above', 55000.0)

    results = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        for price in (54000.0, 56000.0, 57000.0):
            results.extend(engine.check_alerts('BTCUSDT', price))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 1
    assert len(sink.notifications) == 1

    print("  ✓ Exactly one trigger")


def test_validation():
    """Test 4: Bad conditions, prices and fields are rejected"""
    print("\n--- Test 4: Validation ---")
    engine = make_engine()

    with pytest.raises(ValidationError):
        engine.create_alert('BTCUSDT', 'sideways', 100.0)
    with pytest.raises(ValidationError):
        engine.create_alert('BTCUSDT', 'above', -1.0)
    with pytest.raises(ValidationError):
        engine.create_alert('', 'above', 100.0)

    alert = engine.create_alert('BTCUSDT', 'above', 100.0)
    with pytest.raises(ValidationError):
        engine.update_alert(alert.id, triggered=False)
    assert engine.get_alerts() == [alert]

    print("  ✓ Validation working")


def test_update_remove_clear():
    """Test 5: Alert lifecycle operations"""
    print("\n--- Test 5: Update / Remove / Clear ---")
    engine = make_engine()
    a = engine.create_alert('BTCUSDT', 'above', 100.0)
    b = engine.create_alert('BTCUSDT', 'below', 50.0, message='dip')

    updated = engine.update_alert(a.id, price=200.0, condition='below')
    assert updated.price == 200.0
    assert updated.condition == 'below'

    engine.check_alerts('BTCUSDT', 150.0)
    assert a.triggered

    # A triggered alert stays inactive
    engine.update_alert(a.id, active=True)
    assert not a.active
    assert engine.get_active_alerts() == [b]

    engine.update_alert(b.id, active=False)
    assert engine.check_alerts('BTCUSDT', 10.0) == []

    assert engine.update_alert('missing', price=1.0) is None
    assert engine.clear_triggered() == 1
    assert engine.remove_alert(b.id)
    assert not engine.remove_alert(b.id)
    assert engine.get_alerts() == []

    print("  ✓ Lifecycle working")


def test_persistence_and_reload():
    """Test 6: Every mutation persists the collection; load restores it"""
    print("\n--- Test 6: Persistence ---")
    store = InMemoryAlertStore()
    engine = make_engine(store=store)
    a = engine.create_alert('BTCUSDT', 'above', 55000.0)
    engine.create_alert('ETHUSDT', 'below', 3000.0)
    engine.check_alerts('BTCUSDT', 56000.0)

    assert store.put_count == 3
    saved = store.get(STORE_KEY)
    assert len(saved) == 2

    restored = make_engine(store=store)
    assert restored.load() == 2
    reloaded = restored.get_alert(a.id)
    assert reloaded.triggered
    assert isinstance(reloaded.created_at, datetime)
    assert isinstance(reloaded.triggered_at, datetime)
    assert restored.check_alerts('BTCUSDT', 60000.0) == []

    print("  ✓ Alerts reloaded")


def test_json_file_store():
    """Test 7: File store round trip with an atomic rewrite"""
    print("\n--- Test 7: JSON File Store ---")
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / 'nested' / 'alerts.json'
        engine = make_engine(store=JsonFileAlertStore(str(path)))
        engine.create_alert('BTCUSDT', 'above', 55000.0)

        assert path.exists()
        assert not path.with_suffix('.tmp').exists()
        with open(path) as f:
            data = json.load(f)
        assert data['version'] == 1
        assert len(data['records'][STORE_KEY]) == 1

        restored = make_engine(store=JsonFileAlertStore(str(path)))
        assert restored.load() == 1

    print("  ✓ File store working")


def test_store_failure_is_contained():
    """Test 8: An unreachable store does not break alert evaluation"""
    print("\n--- Test 8: Store Failure ---")
    sink = InMemoryNotificationSink()
    engine = make_engine(store=FailingStore(), sink=sink)

    assert engine.load() == 0
    engine.create_alert('BTCUSDT', 'above', 100.0)
    fired = engine.check_alerts('BTCUSDT', 101.0)

    assert len(fired) == 1
    assert len(sink.notifications) == 1
    assert engine.persist_failures == 2

    print("  ✓ Store failure contained")


def test_sink_failure_is_contained():
    """Test 9: A failing sink still leaves the alert triggered once"""
    print("\n--- Test 9: Sink Failure ---")
    engine = make_engine(sink=FailingSink())
    alert = engine.create_alert('BTCUSDT', 'below', 100.0)

    assert len(engine.check_alerts('BTCUSDT', 99.0)) == 1
    assert alert.triggered
    assert engine.notify_failures == 1
    assert engine.check_alerts('BTCUSDT', 98.0) == []

    print("  ✓ Sink failure contained")


def test_slow_write_never_overwrites_newer_snapshot():
    """Test 10: A slow older snapshot cannot replace the triggered state"""
    print("\n--- Test 10: Snapshot Ordering ---")
    store = SlowSecondPutStore(delay=0.3)
    engine = make_engine(store=store)
    alert = engine.create_alert('BTCUSDT', 'above', 55000.0)

    updater = threading.Thread(target=engine.update_alert, args=(alert.id,), kwargs={'message': 'breakout'})
    updater.start()
    assert store.slow_put_started.wait(2.0)
    assert len(engine.check_alerts('BTCUSDT', 56000.0)) == 1
    updater.join(timeout=2.0)

    reloaded = make_engine(store=store)
    assert reloaded.load() == 1
    stored = reloaded.get_alert(alert.id)
    assert stored.triggered
    assert not stored.active
    assert stored.message == 'breakout'
    assert reloaded.check_alerts('BTCUSDT', 57000.0) == []
    assert engine.persist_failures == 0

    print("  ✓ Store keeps the newest snapshot")


def test_notification_types():
    """Test 11: Notification type is validated"""
    print("\n--- Test 11: Notification Types ---")
    sink = InMemoryNotificationSink(max_items=2)
    for i in range(3):
        sink.notify(Notification(type='info', title=f"n{i}", message='x'))

    assert [n.title for n in sink.notifications] == ['n2', 'n1']
    assert sink.unread_count() == 2
    sink.mark_as_read(sink.notifications[0].id)
    assert sink.unread_count() == 1

    with pytest.raises(ValueError):
        Notification(type='urgent', title='t', message='m')

    print("  ✓ Notifications working")


def run_all_tests():
    """Run all alert engine tests"""
    print("\n" + "=" * 60)
    print("ALERT ENGINE TESTS")
    print("=" * 60)

    tests = [
        test_trigger_once_scenario,
        test_below_condition_and_symbol_case,
        test_concurrent_ticks_trigger_once,
        test_validation,
        test_update_remove_clear,
        test_persistence_and_reload,
        test_json_file_store,
        test_store_failure_is_contained,
        test_sink_failure_is_contained,
        test_slow_write_never_overwrites_newer_snapshot,
        test_notification_types,
    ]

    passed = 0
    failed = 0
    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"  ✗ FAILED: {e}")
            failed += 1

    print("\n" + "=" * 60)
    print(f"RESULTS: {passed} passed, {failed} failed")
    print("=" * 60)
    return failed == 0


if __name__ == "__main__":
    import sys
    sys.exit(0 if run_all_tests() else 1)
