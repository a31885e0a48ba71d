"""
Runtime configuration for tailserve.

Values can be overridden through environment variables or a .env file
in the working directory.
"""
from pathlib import Path
import os

from dotenv import load_dotenv

load_dotenv()

# Version
VERSION = "0.3.0"

# Served tree is always the working directory
SERVE_ROOT = Path('.').resolve()

# State directory (remembered port, style sheet, overlay node state)
STATE_DIR = Path(os.environ.get('TAILSERVE_STATE_DIR', './tsnet-state'))
PORT_FILE = 'port'
STYLE_FILE = 'style.css'

# Listener settings
LOCAL_HOST = os.environ.get('TAILSERVE_HOST', '127.0.0.1')
LOCAL_PORT = int(os.environ.get('TAILSERVE_PORT', '8080'))
SECURED_PORT = int(os.environ.get('TAILSERVE_SECURED_PORT', '443'))

# Overlay network binaries
TAILSCALE_BIN = os.environ.get('TAILSCALE_BIN', 'tailscale')
TAILSCALED_BIN = os.environ.get('TAILSCALED_BIN', 'tailscaled')
CERT_RENEW_DAYS = 7            # Refetch certificates this close to expiry

# Timing (seconds)
READY_POLL_INTERVAL = 0.5
READY_TIMEOUT = 60
SHUTDOWN_TIMEOUT = 5
HANDSHAKE_TIMEOUT = 10
IDENTITY_TIMEOUT = 5
AUTH_PROMPT_INTERVAL = 60

# Rendering
MARKDOWN_SUFFIXES = {'.md', '.markdown'}
RAW_QUERY_FLAG = 'raw'

# Logging
LOG_FORMAT = '%(asctime)s %(message)s'
LOG_DATE_FORMAT = '%Y/%m/%d %H:%M:%S'
