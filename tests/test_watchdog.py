"""Tests for the heartbeat watchdog."""

import threading
import time

from interview_cli.watchdog import HEARTBEAT_GRACE_SECONDS, HeartbeatWatchdog


def test_default_grace_is_sixty_seconds():
    assert HEARTBEAT_GRACE_SECONDS == 60.0
    assert HeartbeatWatchdog(lambda: None).grace_seconds == 60.0


def test_idle_until_first_beat():
    fired = threading.Event()
    watchdog = HeartbeatWatchdog(fired.set, grace_seconds=0.05)

    assert not watchdog.armed
    assert not fired.wait(0.2)


def test_fires_once_after_gap():
    calls = []
    done = threading.Event()

    def on_expire():
        calls.append(1)
        done.set()

    watchdog = HeartbeatWatchdog(on_expire, grace_seconds=0.05)
    watchdog.beat()

    assert done.wait(2)
    time.sleep(0.1)
    assert calls == [1]
    assert watchdog.fired
    assert not watchdog.armed

    # Beats after expiry do nothing
    watchdog.beat()
    time.sleep(0.1)
    assert calls == [1]


def test_beats_keep_it_alive():
    fired = threading.Event()
    watchdog = HeartbeatWatchdog(fired.set, grace_seconds=0.5)
    watchdog.beat()
    for _ in range(5):
        time.sleep(0.1)
        watchdog.beat()
    assert not fired.is_set()
    watchdog.stop()


def test_stop_disarms_permanently():
    fired = threading.Event()
    watchdog = HeartbeatWatchdog(fired.set, grace_seconds=0.05)
    watchdog.beat()
    watchdog.stop()
    watchdog.beat()

    assert not watchdog.armed
    assert not fired.wait(0.2)
    assert not watchdog.fired
