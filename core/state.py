"""
Per-process state directory.

Holds at most a remembered port and a custom style sheet. Both files are
optional and read once at startup.
"""
from pathlib import Path
from typing import Optional
import logging

from config import PORT_FILE, STYLE_FILE
from .errors import StartupError

logger = logging.getLogger(__name__)


class StateDirectory:
    """
    Remembered port and style sheet storage.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.port_file = self.path / PORT_FILE
        self.style_file = self.path / STYLE_FILE

    def ensure(self):
        """
        Create the directory (0700).

        Raises:
            StartupError: if it cannot be created
        """
        try:
            self.path.mkdir(parents=True, exist_ok=True, mode=0o700)
        except OSError as e:
            raise StartupError(f"cannot create state directory {self.path}: {e}") from e

    def load_port(self) -> Optional[int]:
        """Return the remembered port, or None if absent or unreadable."""
        try:
            text = self.port_file.read_text(encoding='utf-8').strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cannot read remembered port: %s", e)
            return None

        try:
            port = int(text)
        except ValueError:
            logger.warning("Ignoring malformed remembered port: %r", text)
            return None

        if not 0 < port < 65536:
            logger.warning("Ignoring out of range remembered port: %d", port)
            return None
        return port

    def save_port(self, port: int) -> bool:
        """
        Remember the port for the next startup. Best effort.

        Returns:
            True if written
        """
        try:
            self.path.mkdir(parents=True, exist_ok=True, mode=0o700)
            self.port_file.write_text(f"{port}\n", encoding='utf-8')
            return True
        except OSError as e:
            logger.warning("Failed to remember port %d: %s", port, e)
            return False

    def load_style(self) -> Optional[str]:
        """Return the custom style sheet, or None if absent or unreadable."""
        try:
            return self.style_file.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Cannot read style sheet %s: %s", self.style_file, e)
            return None
