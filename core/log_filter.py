"""
Diagnostic output filter.

The overlay daemon and the HTTP server are chatty. Only operational
lines reach the terminal: the startup announcement, access lines,
failures and the shutdown notice. The login prompt is shown once and
then at most once per throttle interval until someone acts on it.
"""
import logging
import sys
import threading
import time
from typing import Callable, Optional, TextIO

from config import AUTH_PROMPT_INTERVAL, LOG_DATE_FORMAT, LOG_FORMAT

# Substrings that always pass
ALLOWED_MARKERS = (
    'serving . at',
    'access: ',
    'bind: ',
    'shutting down',
)

# Matched case-insensitively
FAILURE_MARKERS = ('error', 'fail')

AUTH_PROMPT_MARKERS = (
    'To start this tsnet server',
    'To authenticate, visit',
)


class DiagnosticFilter:
    """
    Write-like sink that surfaces, suppresses or throttles lines.

    Safe for concurrent use: the throttle state is guarded by a lock.
    """

    def __init__(self, stream: Optional[TextIO] = None,
                 auth_interval: float = AUTH_PROMPT_INTERVAL,
                 clock: Callable[[], float] = time.monotonic,
                 verbose: bool = False):
        self.stream = stream
        self.auth_interval = auth_interval
        self.clock = clock
        self.verbose = verbose
        self._lock = threading.Lock()
        self._last_auth = 0.0
        self._auth_shown = False

    def write(self, text: str) -> int:
        """Accept one diagnostic line. Always reports the full length."""
        if self.verbose or self.is_allowed(text):
            self._emit(text)
        elif self.is_auth_prompt(text):
            with self._lock:
                now = self.clock()
                if not self._auth_shown or now - self._last_auth >= self.auth_interval:
                    self._last_auth = now
                    self._auth_shown = True
                    self._emit(text)
        return len(text)

    def flush(self):
        stream = self._stream()
        try:
            stream.flush()
        except (OSError, ValueError):
            pass

    @staticmethod
    def is_allowed(text: str) -> bool:
        if any(marker in text for marker in ALLOWED_MARKERS):
            return True
        lowered = text.lower()
        return any(marker in lowered for marker in FAILURE_MARKERS)

    @staticmethod
    def is_auth_prompt(text: str) -> bool:
        return any(marker in text for marker in AUTH_PROMPT_MARKERS)

    def _stream(self) -> TextIO:
        # Resolved late so a replaced sys.stderr is honoured
        return self.stream if self.stream is not None else sys.stderr

    def _emit(self, text: str):
        # write() never raises
        try:
            self._stream().write(text)
        except (OSError, ValueError):
            pass


class DiagnosticHandler(logging.Handler):
    """
    Logging handler that routes formatted records into a DiagnosticFilter.
    """
    def __init__(self, sink: DiagnosticFilter):
        super().__init__()
        self.sink = sink

    def emit(self, record):
        try:
            self.sink.write(self.format(record) + '\n')
        except Exception:
            self.handleError(record)


def install_log_filter(sink: DiagnosticFilter) -> DiagnosticHandler:
    """
    Make the filter the root logger's only handler.

    Library loggers (werkzeug, overlay daemon output) propagate to the
    root logger and therefore pass through the same filter.
    """
    handler = DiagnosticHandler(sink)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if sink.verbose else logging.INFO)
    return handler
