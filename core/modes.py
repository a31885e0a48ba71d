"""
Operating mode selection and listener bootstrap.

All mode-specific decisions are made here. The result is a ModeBundle
that the dispatcher and lifecycle controller use without knowing which
mode produced it.
"""
import enum
import socket
import ssl
import webbrowser
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from config import LOCAL_HOST, LOCAL_PORT, SECURED_PORT
from .errors import ProviderError, StartupError
from .identity import IdentityResolver, local_resolver
from .overlay import TailscaleProvider, make_tls_context
from .readiness import ReadinessPoller
from .state import StateDirectory

logger = logging.getLogger(__name__)


class OperatingMode(enum.Enum):
    LOCAL = 'local'
    SECURED = 'secured'


@dataclass(frozen=True)
class ListenerConfig:
    host: str
    port: int
    tls: bool = False

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


class Announcer:
    """
    Announces the reachable URL once it is known.

    Optionally opens the URL in a browser.
    """

    def __init__(self, open_browser: bool = False,
                 opener: Callable[[str], bool] = webbrowser.open):
        self.open_browser = open_browser
        self.opener = opener
        self.url: Optional[str] = None

    def __call__(self, url: str):
        self.url = url
        logger.info("serving . at %s ...", url)
        if self.open_browser:
            self.opener(url)


@dataclass
class ModeBundle:
    """
    Everything a mode produces. Never partially initialized.
    """
    mode: OperatingMode
    listener: socket.socket
    config: ListenerConfig
    resolver: IdentityResolver
    ssl_context: Optional[ssl.SSLContext] = None
    style: Optional[str] = None
    poller: Optional[ReadinessPoller] = None
    provider: Optional[TailscaleProvider] = field(default=None, repr=False)

    def close(self):
        if self.poller:
            self.poller.cancel()
        self.listener.close()
        if self.provider:
            self.provider.close()


def default_hostname() -> str:
    """Tailnet hostname: the name of the served directory."""
    return Path.cwd().name


def secured_url(dns_name: str, port: int) -> str:
    if port == 443:
        return f"https://{dns_name}"
    return f"https://{dns_name}:{port}"


def bind_listener(host: str, port: int) -> socket.socket:
    """
    Raises:
        StartupError: if the address cannot be bound
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(128)
    except OSError as e:
        sock.close()
        raise StartupError(f"bind: {host}:{port}: {e}", bind=True) from e
    return sock


def bootstrap(mode: OperatingMode, state: StateDirectory, *,
              port: Optional[int] = None,
              hostname: Optional[str] = None,
              announcer: Optional[Announcer] = None,
              local_host: str = LOCAL_HOST,
              default_port: int = LOCAL_PORT,
              secured_port: int = SECURED_PORT,
              provider_factory: Callable[[str, Path], TailscaleProvider] = TailscaleProvider,
              start_poller: bool = True) -> ModeBundle:
    """
    Build the listener and identity resolver for the selected mode.

    Args:
        mode: Operating mode
        state: State directory
        port: Explicit port (Local mode only)
        hostname: Tailnet hostname (Secured mode only)
        announcer: Receives the reachable URL
        provider_factory: Builds the overlay provider from (hostname, state dir)
        start_poller: Start the readiness poller thread (Secured mode only)

    Raises:
        StartupError: on bind, state directory or provider failure
    """
    announcer = announcer or Announcer()

    if mode is OperatingMode.LOCAL:
        return _bootstrap_local(state, port, announcer, local_host, default_port)
    return _bootstrap_secured(state, hostname or default_hostname(), announcer,
                              secured_port, provider_factory, start_poller)


def _bootstrap_local(state: StateDirectory, port: Optional[int], announcer: Announcer,
                     host: str, default_port: int) -> ModeBundle:
    if port is None:
        port = state.load_port() or default_port
        explicit = False
    else:
        explicit = True

    listener = bind_listener(host, port)
    bound_port = listener.getsockname()[1]
    if explicit:
        state.save_port(bound_port)

    announcer(f"http://localhost:{bound_port}")
    return ModeBundle(
        mode=OperatingMode.LOCAL,
        listener=listener,
        config=ListenerConfig(host, bound_port, tls=False),
        resolver=local_resolver,
    )


def _bootstrap_secured(state: StateDirectory, hostname: str, announcer: Announcer,
                       port: int, provider_factory, start_poller: bool) -> ModeBundle:
    state.ensure()

    provider = provider_factory(hostname, state.path)
    try:
        provider.start()
    except ProviderError as e:
        raise StartupError(f"overlay provider failed to start: {e}") from e

    try:
        listener = provider.listen(port)
    except OSError as e:
        provider.close()
        raise StartupError(f"bind: 127.0.0.1:{port}: {e}", bind=True) from e

    poller = ReadinessPoller(
        provider.status,
        on_ready=lambda dns_name: announcer(secured_url(dns_name, port)),
    )
    if start_poller:
        poller.start()

    return ModeBundle(
        mode=OperatingMode.SECURED,
        listener=listener,
        config=ListenerConfig('127.0.0.1', listener.getsockname()[1], tls=True),
        resolver=provider.whois,
        ssl_context=make_tls_context(provider.get_certificate),
        style=state.load_style(),
        poller=poller,
        provider=provider,
    )
