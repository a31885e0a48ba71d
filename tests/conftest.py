"""
Shared fixtures.
"""
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from core.identity import Identity
from core.overlay import OverlayStatus


@pytest.fixture
def serve_root(tmp_path):
    """Served tree with a sibling secret outside it."""
    root = tmp_path / "site"
    root.mkdir()
    (root / "README.md").write_text("# Hello\n\nSome *text*.\n", encoding="utf-8")
    (root / "notes.txt").write_text("plain notes", encoding="utf-8")
    (root / "docs").mkdir()
    (root / "docs" / "guide.MARKDOWN").write_text("| a | b |\n|---|---|\n| 1 | 2 |\n", encoding="utf-8")

    (tmp_path / "secret.md").write_text("# SENSITIVE DATA", encoding="utf-8")
    return root.resolve()


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "tsnet-state"


class FakeProvider:
    """In-memory stand-in for TailscaleProvider."""

    def __init__(self, hostname, state_dir, statuses=None, fail_start=False):
        self.hostname = hostname
        self.state_dir = Path(state_dir)
        self.statuses = list(statuses or [OverlayStatus('Running', 'node.tail1234.ts.net')])
        self.fail_start = fail_start
        self.started = False
        self.closed = False
        self.listen_port = None
        self.identities = {}

    def start(self):
        from core.errors import ProviderError
        if self.fail_start:
            raise ProviderError("tailscaled not found")
        self.started = True

    def close(self):
        self.closed = True

    def listen(self, port):
        import socket
        self.listen_port = port
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(('127.0.0.1', 0))
        sock.listen(8)
        return sock

    def status(self):
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    def whois(self, peer_addr, timeout):
        from core.errors import IdentityError
        try:
            return self.identities[peer_addr]
        except KeyError:
            raise IdentityError(f"no identity for {peer_addr}")

    def get_certificate(self, server_name):
        raise NotImplementedError


@pytest.fixture
def fake_provider_factory():
    created = []

    def factory(hostname, state_dir):
        provider = FakeProvider(hostname, state_dir)
        created.append(provider)
        return provider

    factory.created = created
    return factory


@pytest.fixture
def access_records(caplog):
    """Access lines emitted during the test."""
    caplog.set_level(logging.INFO, logger='tailserve.access')

    def records():
        return [r.getMessage() for r in caplog.records if r.name == 'tailserve.access']

    return records


@pytest.fixture
def alice():
    return Identity(login_name='alice@example.com', device='laptop')


def write_cert_pair(cert_file, key_file, name, valid_days):
    """Self-signed certificate and key for name, PEM encoded."""
    key = ec.generate_private_key(ec.SECP256R1())
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, name)])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=valid_days))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(name)]), critical=False)
        .sign(key, hashes.SHA256())
    )
    cert_file.parent.mkdir(parents=True, exist_ok=True)
    cert_file.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_file.write_bytes(key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    ))
