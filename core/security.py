"""
Path resolution for the served tree.
"""
import posixpath
import re
from pathlib import Path
from typing import Optional
import logging

logger = logging.getLogger(__name__)

WINDOWS_DRIVE_PATTERN = re.compile(r'^[a-zA-Z]:[\\/]')


def sanitize_path(url_path: str, base_dir: Path) -> Optional[Path]:
    """
    Map a request path onto a file below base_dir.

    Returns None instead of raising when the path cannot be served from
    inside base_dir:
    1. Null bytes
    2. Drive-qualified paths
    3. Lexical escape (cleaned path starts with '..')
    4. Symlink escape (resolved path outside base_dir)
    """
    if not base_dir.is_absolute():
        raise ValueError("base_dir must be absolute")

    if '\x00' in url_path:
        logger.debug("Null byte in path: %r", url_path)
        return None

    if WINDOWS_DRIVE_PATTERN.match(url_path):
        return None

    # Request paths are rooted at base_dir, so a leading slash is not an escape
    cleaned = posixpath.normpath(url_path.replace('\\', '/').lstrip('/'))
    if cleaned == '..' or cleaned.startswith('../'):
        logger.debug("Path escape attempt: %s", url_path)
        return None

    requested = base_dir / cleaned if cleaned != '.' else base_dir

    try:
        resolved = requested.resolve(strict=False)
    except (OSError, RuntimeError) as e:
        logger.debug("Path resolution failed: %s", e)
        return None

    try:
        resolved.relative_to(base_dir.resolve())
    except ValueError:
        logger.debug("Symlink escape attempt: %s -> %s", url_path, resolved)
        return None

    return resolved
