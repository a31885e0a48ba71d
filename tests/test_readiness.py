"""
Readiness poller: terminal outcomes.
"""
import threading
import webbrowser
from unittest.mock import Mock

from core.errors import ProviderError
from core.overlay import OverlayStatus
from core.readiness import ReadinessOutcome, ReadinessPoller


class SteppingClock:
    """Advances by `step` on every read."""

    def __init__(self, step):
        self.now = 0.0
        self.step = step

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


def test_ready_after_some_polls():
    statuses = [OverlayStatus('NeedsLogin'), OverlayStatus('Starting'),
                OverlayStatus('Running', 'files.tail1234.ts.net')]
    on_ready = Mock()
    poller = ReadinessPoller(lambda: statuses.pop(0), on_ready, interval=0, timeout=60)

    assert poller.run() is ReadinessOutcome.READY
    on_ready.assert_called_once_with('files.tail1234.ts.net')
    assert poller.outcome is ReadinessOutcome.READY


def test_provider_errors_are_retried():
    calls = {'n': 0}

    def status():
        calls['n'] += 1
        if calls['n'] < 3:
            raise ProviderError("socket not ready")
        return OverlayStatus('Running', 'files.ts.net')

    poller = ReadinessPoller(status, Mock(), interval=0, timeout=60)
    assert poller.run() is ReadinessOutcome.READY
    assert calls['n'] == 3


def test_timeout_gives_up_without_announcing(caplog):
    on_ready = Mock()
    poller = ReadinessPoller(lambda: OverlayStatus('NeedsLogin'), on_ready,
                             interval=0, timeout=60, clock=SteppingClock(step=0.5))

    assert poller.run() is ReadinessOutcome.TIMED_OUT
    on_ready.assert_not_called()
    assert any("readiness check failed" in r.getMessage() for r in caplog.records)


def test_cancel_interrupts_wait():
    started = threading.Event()

    def status():
        started.set()
        return OverlayStatus('NeedsLogin')

    poller = ReadinessPoller(status, Mock(), interval=30, timeout=600)
    poller.start()
    assert started.wait(5)
    poller.cancel()

    assert poller.wait(5) is ReadinessOutcome.CANCELLED
    poller.poll_thread.join(5)
    assert not poller.poll_thread.is_alive()


def test_running_without_dns_name_is_not_announced(caplog):
    on_ready = Mock()
    poller = ReadinessPoller(lambda: OverlayStatus('Running', ''), on_ready, interval=0, timeout=60)

    assert poller.run() is ReadinessOutcome.READY
    on_ready.assert_not_called()
    assert any("announce failed" in r.getMessage() for r in caplog.records)


def test_announcer_failure_still_terminates(caplog):
    on_ready = Mock(side_effect=webbrowser.Error("could not locate runnable browser"))
    poller = ReadinessPoller(lambda: OverlayStatus('Running', 'files.ts.net'), on_ready,
                             interval=0, timeout=60)

    assert poller.run() is ReadinessOutcome.READY
    assert poller.wait(0) is ReadinessOutcome.READY
    assert any("announce failed for files.ts.net" in r.getMessage() for r in caplog.records)
