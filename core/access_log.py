"""
Per-request access logging.

One line per request, written before the response is produced. The
"access: " prefix is on the diagnostic filter's allow-list.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from .identity import Identity

UNKNOWN_IDENTITY = 'unknown'

logger = logging.getLogger('tailserve.access')


@dataclass(frozen=True)
class AccessLogEntry:
    identity: str
    device: str
    path: str

    @classmethod
    def for_request(cls, who: Optional[Identity], path: str) -> 'AccessLogEntry':
        if who is None:
            return cls(UNKNOWN_IDENTITY, '', path)
        return cls(who.login_name or UNKNOWN_IDENTITY, who.device, path)

    def format(self) -> str:
        if self.device:
            return f"access: {self.identity} ({self.device}) {self.path}"
        return f"access: {self.identity} {self.path}"


class AccessLogger:
    """Writes AccessLogEntry lines to the 'tailserve.access' logger."""

    def __init__(self, log: logging.Logger = logger):
        self.log = log

    def log_access(self, who: Optional[Identity], path: str) -> AccessLogEntry:
        """
        Log one request.

        Args:
            who: Resolved identity, or None if resolution failed
            path: Request path as received

        Returns:
            The emitted entry
        """
        entry = AccessLogEntry.for_request(who, path)
        self.log.info(entry.format())
        return entry
