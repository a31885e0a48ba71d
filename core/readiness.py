"""
Overlay network readiness poller.

Joining the tailnet (login, key exchange, DNS name assignment) happens
asynchronously after the listener is already up. The poller watches the
provider status until it reports Running, then announces the reachable
name once.
"""
import enum
import threading
import time
import logging
from typing import Callable, Optional

from config import READY_POLL_INTERVAL, READY_TIMEOUT
from .errors import ProviderError
from .overlay import OverlayStatus

logger = logging.getLogger(__name__)


class ReadinessOutcome(enum.Enum):
    READY = 'ready'
    TIMED_OUT = 'timed_out'
    CANCELLED = 'cancelled'


class ReadinessPoller:
    """
    Polls a status callable on a background thread.

    Terminates with exactly one ReadinessOutcome: READY when a running
    status is observed, TIMED_OUT after the deadline, or CANCELLED.
    """

    def __init__(self, status: Callable[[], OverlayStatus],
                 on_ready: Callable[[str], None],
                 interval: float = READY_POLL_INTERVAL,
                 timeout: float = READY_TIMEOUT,
                 clock: Callable[[], float] = time.monotonic):
        """
        Args:
            status: Returns the current provider status
            on_ready: Called with the DNS name once the node is running
            interval: Seconds between polls
            timeout: Seconds before giving up
        """
        self.status = status
        self.on_ready = on_ready
        self.interval = interval
        self.timeout = timeout
        self.clock = clock
        self.outcome: Optional[ReadinessOutcome] = None
        self.poll_thread: Optional[threading.Thread] = None
        self._cancel = threading.Event()
        self._done = threading.Event()

    def start(self):
        self.poll_thread = threading.Thread(target=self.run, name='readiness-poller', daemon=True)
        self.poll_thread.start()

    def cancel(self):
        self._cancel.set()

    def wait(self, timeout: Optional[float] = None) -> Optional[ReadinessOutcome]:
        """Block until the poller terminates; returns the outcome (None if still running)."""
        self._done.wait(timeout)
        return self.outcome

    def run(self) -> ReadinessOutcome:
        """Poll loop. Runs on the poller thread, or inline in tests."""
        deadline = self.clock() + self.timeout
        try:
            self.outcome = self._poll_until(deadline)
        finally:
            self._done.set()
        return self.outcome

    def _poll_until(self, deadline: float) -> ReadinessOutcome:
        while not self._cancel.is_set():
            try:
                st = self.status()
            except ProviderError as e:
                logger.debug("Status poll: %s", e)
            else:
                if st.running:
                    self._announce(st.dns_name)
                    return ReadinessOutcome.READY

            if self.clock() >= deadline:
                logger.warning(
                    "readiness check failed: overlay network not running after %ds; "
                    "still listening, the address will not be announced",
                    self.timeout)
                return ReadinessOutcome.TIMED_OUT

            self._cancel.wait(self.interval)

        return ReadinessOutcome.CANCELLED

    def _announce(self, dns_name: str):
        if not dns_name:
            logger.warning("announce failed: overlay node is running without a DNS name")
            return
        try:
            self.on_ready(dns_name)
        except Exception as e:
            logger.error("announce failed for %s: %s", dns_name, e)
