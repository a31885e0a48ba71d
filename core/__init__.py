"""
tailserve core package

Mode bootstrap, overlay provider, diagnostic filtering and process
lifecycle.
"""

__version__ = "0.3.0"

# Import main classes for easier access
from .errors import TailserveError, StartupError, IdentityError, ProviderError
from .identity import Identity, LOCAL_IDENTITY
from .access_log import AccessLogEntry, AccessLogger
from .log_filter import DiagnosticFilter, DiagnosticHandler, install_log_filter
from .state import StateDirectory
from .overlay import OverlayStatus, TailscaleProvider
from .readiness import ReadinessOutcome, ReadinessPoller
from .modes import Announcer, ListenerConfig, ModeBundle, OperatingMode, bootstrap
from .lifecycle import LifecycleController

__all__ = [
    # Errors
    'TailserveError',
    'StartupError',
    'IdentityError',
    'ProviderError',

    # Identity and access
    'Identity',
    'LOCAL_IDENTITY',
    'AccessLogEntry',
    'AccessLogger',

    # Diagnostics
    'DiagnosticFilter',
    'DiagnosticHandler',
    'install_log_filter',

    # Startup
    'StateDirectory',
    'OverlayStatus',
    'TailscaleProvider',
    'ReadinessOutcome',
    'ReadinessPoller',
    'Announcer',
    'ListenerConfig',
    'ModeBundle',
    'OperatingMode',
    'bootstrap',

    # Lifecycle
    'LifecycleController',
]
