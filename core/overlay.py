"""
Tailscale overlay network provider.

Runs a dedicated userspace tailscaled rooted at the state directory, so
the served node has its own identity and hostname on the tailnet.
Tailnet connections to the node are forwarded by tailscaled to the
loopback listener, and whois lookups on those forwarded connections
report the original tailnet peer.

Everything is driven through the tailscale CLI against the node's
private LocalAPI socket.
"""
import json
import os
import re
import socket
import ssl
import subprocess
import threading
import time
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from cryptography import x509

from config import CERT_RENEW_DAYS, TAILSCALE_BIN, TAILSCALED_BIN
from .errors import IdentityError, ProviderError
from .identity import Identity, first_label

logger = logging.getLogger(__name__)
daemon_logger = logging.getLogger('tailserve.tailscaled')

# Certificate names come from the TLS client; never let one become a CLI flag
SAFE_DNS_NAME = re.compile(r'^[a-zA-Z0-9][a-zA-Z0-9.-]*$')

STATUS_TIMEOUT = 5
CERT_TIMEOUT = 60
SOCKET_WAIT = 10


@dataclass(frozen=True)
class OverlayStatus:
    backend_state: str
    dns_name: str = ''

    @property
    def running(self) -> bool:
        return self.backend_state == 'Running'


class TailscaleProvider:
    """
    One tailnet node, identified by hostname, persisted in state_dir.
    """

    def __init__(self, hostname: str, state_dir: Path,
                 tailscale_bin: str = TAILSCALE_BIN,
                 tailscaled_bin: str = TAILSCALED_BIN):
        self.hostname = hostname
        self.state_dir = Path(state_dir)
        self.tailscale_bin = tailscale_bin
        self.tailscaled_bin = tailscaled_bin
        self.socket_path = self.state_dir / 'tailscaled.sock'
        self.cert_dir = self.state_dir / 'certs'
        self.daemon: Optional[subprocess.Popen] = None
        self.login: Optional[subprocess.Popen] = None
        self._cert_lock = threading.Lock()

    # Lifecycle

    def start(self):
        """
        Start tailscaled and bring the node up.

        Login completes in the background; until then `tailscale up`
        prints a login URL which is logged for the operator.

        Raises:
            ProviderError: if tailscaled cannot be started
        """
        self.daemon = self._spawn([
            self.tailscaled_bin,
            '--tun=userspace-networking',
            f'--statedir={self.state_dir}',
            f'--socket={self.socket_path}',
            '--port=0',
        ], name='tailscaled')
        self._wait_for_socket()

        up_args = [*self._cli_prefix(), 'up', f'--hostname={self.hostname}']
        auth_key = os.environ.get('TS_AUTHKEY')
        if auth_key:
            up_args.append(f'--auth-key={auth_key}')
        self.login = self._spawn(up_args, name='tailscale-up')
        logger.info("Overlay node %s starting in %s", self.hostname, self.state_dir)

    def close(self):
        for proc in (self.login, self.daemon):
            if proc is None or proc.poll() is not None:
                continue
            proc.terminate()
            try:
                proc.wait(timeout=5)
            except subprocess.TimeoutExpired:
                proc.kill()
        logger.info("Overlay node stopped")

    def listen(self, port: int) -> socket.socket:
        """
        Bind the loopback listener tailscaled forwards tailnet traffic to.

        Userspace tailscaled forwards a tailnet port to the same port on
        127.0.0.1, so port is also the port peers connect to. It defaults
        to 443 (TAILSERVE_SECURED_PORT picks an unprivileged one). Local
        processes can reach this socket directly; their requests have no
        tailnet identity and are logged as unknown.

        Raises:
            OSError: if the port cannot be bound
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(('127.0.0.1', port))
            sock.listen(128)
        except OSError:
            sock.close()
            raise
        return sock

    # Queries

    def status(self) -> OverlayStatus:
        data = self._cli_json('status', '--json', timeout=STATUS_TIMEOUT)
        dns_name = (data.get('Self') or {}).get('DNSName', '')
        return OverlayStatus(
            backend_state=data.get('BackendState', ''),
            dns_name=dns_name.rstrip('.'),
        )

    def whois(self, peer_addr: str, timeout: float) -> Identity:
        """
        Resolve a connection's peer address to a tailnet identity.

        Raises:
            IdentityError: on lookup failure or timeout
        """
        try:
            data = self._cli_json('whois', '--json', peer_addr, timeout=timeout)
        except ProviderError as e:
            raise IdentityError(f"whois {peer_addr}: {e}") from e

        profile = data.get('UserProfile') or {}
        node = data.get('Node') or {}
        login_name = profile.get('LoginName')
        if not login_name:
            raise IdentityError(f"whois {peer_addr}: no user profile")
        return Identity(
            login_name=login_name,
            device=first_label(node.get('ComputedName') or node.get('Name') or ''),
        )

    def get_certificate(self, server_name: str) -> Tuple[Path, Path]:
        """
        Return (cert_file, key_file) for server_name, fetching if needed.

        Cached pairs are reused until they come within CERT_RENEW_DAYS of
        expiry.

        Raises:
            ProviderError: if the name is invalid or the fetch fails
        """
        if not SAFE_DNS_NAME.match(server_name):
            raise ProviderError(f"invalid certificate name {server_name!r}")

        cert_file = self.cert_dir / f"{server_name}.crt"
        key_file = self.cert_dir / f"{server_name}.key"

        with self._cert_lock:
            if key_file.exists() and cert_is_fresh(cert_file):
                return cert_file, key_file

            self.cert_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
            self._cli('cert',
                      f'--cert-file={cert_file}',
                      f'--key-file={key_file}',
                      server_name,
                      timeout=CERT_TIMEOUT)
            logger.info("Fetched TLS certificate for %s", server_name)
            return cert_file, key_file

    # Internals

    def _cli_prefix(self) -> List[str]:
        return [self.tailscale_bin, f'--socket={self.socket_path}']

    def _cli(self, *args: str, timeout: float) -> str:
        try:
            result = subprocess.run(
                [*self._cli_prefix(), *args],
                capture_output=True, text=True, timeout=timeout, check=False,
            )
        except FileNotFoundError as e:
            raise ProviderError(f"{self.tailscale_bin} not found") from e
        except subprocess.TimeoutExpired as e:
            raise ProviderError(f"tailscale {args[0]} timed out after {timeout}s") from e

        if result.returncode != 0:
            raise ProviderError(
                f"tailscale {args[0]} exited {result.returncode}: {result.stderr.strip()}")
        return result.stdout

    def _cli_json(self, *args: str, timeout: float) -> dict:
        out = self._cli(*args, timeout=timeout)
        try:
            return json.loads(out)
        except json.JSONDecodeError as e:
            raise ProviderError(f"tailscale {args[0]}: malformed JSON: {e}") from e

    def _spawn(self, args: List[str], name: str) -> subprocess.Popen:
        try:
            proc = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
            )
        except OSError as e:
            raise ProviderError(f"cannot start {args[0]}: {e}") from e

        threading.Thread(target=pump_output, args=(proc.stdout, daemon_logger.info),
                         name=f'{name}-output', daemon=True).start()
        return proc

    def _wait_for_socket(self):
        deadline = time.monotonic() + SOCKET_WAIT
        while not self.socket_path.exists():
            if self.daemon.poll() is not None:
                raise ProviderError(f"tailscaled exited with status {self.daemon.returncode}")
            if time.monotonic() >= deadline:
                raise ProviderError(f"tailscaled socket {self.socket_path} did not appear")
            time.sleep(0.1)


def pump_output(stream, emit: Callable[[str], None]):
    """
    Forward subprocess output line by line.

    `tailscale up` prints the login URL on the line after its prompt;
    the two are joined so the prompt line carries the URL.
    """
    prompt = None
    for raw in stream:
        line = raw.strip()
        if not line:
            continue
        if prompt is not None:
            emit(f"{prompt} {line}")
            prompt = None
        elif line.endswith('visit:'):
            prompt = line
        else:
            emit(line)
    if prompt is not None:
        emit(prompt)


def cert_is_fresh(cert_file: Path, now: Optional[datetime] = None) -> bool:
    """True if cert_file exists and is valid for more than CERT_RENEW_DAYS."""
    try:
        cert = x509.load_pem_x509_certificate(cert_file.read_bytes())
    except (OSError, ValueError):
        return False
    now = now or datetime.now(timezone.utc)
    return cert.not_valid_after_utc - now > timedelta(days=CERT_RENEW_DAYS)


def make_tls_context(get_certificate: Callable[[str], Tuple[Path, Path]]) -> ssl.SSLContext:
    """
    Server TLS context whose certificate is chosen per handshake by SNI.

    The certificate source is consulted on every handshake; clients that
    send no server name are rejected.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    def select_certificate(ssl_obj, server_name, _context):
        if not server_name:
            return ssl.ALERT_DESCRIPTION_UNRECOGNIZED_NAME
        try:
            cert_file, key_file = get_certificate(server_name)
            per_name = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            per_name.minimum_version = ssl.TLSVersion.TLSv1_2
            per_name.load_cert_chain(cert_file, key_file)
        except (ProviderError, ssl.SSLError, OSError) as e:
            logger.error("TLS certificate for %s failed: %s", server_name, e)
            return ssl.ALERT_DESCRIPTION_INTERNAL_ERROR
        ssl_obj.context = per_name
        return None

    context.sni_callback = select_certificate
    return context
