"""
Request dispatcher: identity attribution, access logging, routing.
"""
from unittest.mock import Mock

import pytest

from core.errors import IdentityError
from core.identity import local_resolver
from server.gateway import create_app, peer_address
from server.renderer import MarkdownRenderer


def failing_resolver(peer_addr, timeout):
    raise IdentityError("peer not on tailnet")


@pytest.fixture
def make_client(serve_root):
    def _make(resolver=local_resolver, style=None, private_dirs=()):
        app = create_app(serve_root, resolver, MarkdownRenderer(serve_root, style=style),
                         private_dirs=private_dirs)
        return app.test_client()
    return _make


class TestIdentity:
    def test_local_identity_logged(self, make_client, access_records):
        response = make_client().get('/notes.txt')
        assert response.status_code == 200
        assert access_records() == ["access: local-user (localhost) /notes.txt"]

    def test_resolver_receives_peer_and_timeout(self, make_client, alice, access_records):
        resolver = Mock(return_value=alice)
        client = make_client(resolver=resolver)
        client.get('/notes.txt', environ_base={'REMOTE_ADDR': '100.64.0.7', 'REMOTE_PORT': '51234'})

        resolver.assert_called_once_with('100.64.0.7:51234', 5)
        assert access_records() == ["access: alice@example.com (laptop) /notes.txt"]

    def test_failed_resolution_still_served(self, make_client, access_records):
        response = make_client(resolver=failing_resolver).get('/notes.txt')

        assert response.status_code == 200
        assert response.data == b"plain notes"
        records = access_records()
        assert len(records) == 1
        assert "unknown" in records[0]
        assert records[0] == "access: unknown /notes.txt"

    def test_access_logged_for_missing_files(self, make_client, access_records):
        response = make_client().get('/nope.txt')
        assert response.status_code == 404
        assert access_records() == ["access: local-user (localhost) /nope.txt"]


class TestRouting:
    def test_markdown_rendered(self, make_client):
        response = make_client(style="h1 { color: red; }").get('/README.md')
        assert response.status_code == 200
        assert response.mimetype == 'text/html'
        body = response.get_data(as_text=True)
        assert "<h1" in body and "Hello</h1>" in body
        assert "h1 { color: red; }" in body

    def test_raw_flag_returns_original_bytes(self, make_client, serve_root):
        response = make_client().get('/README.md?raw=1')
        assert response.status_code == 200
        assert response.data == (serve_root / "README.md").read_bytes()

    def test_traversal_matches_static_404(self, make_client):
        client = make_client()
        rendered = client.get('/../secret.md')
        raw = client.get('/../secret.md?raw=1')

        assert rendered.status_code == 404
        assert raw.status_code == 404
        assert b"SENSITIVE" not in rendered.data
        assert rendered.data == raw.data

    def test_directory_redirects_to_slash(self, make_client):
        response = make_client().get('/docs')
        assert response.status_code == 301
        assert response.headers['Location'].endswith('/docs/')

    def test_directory_listing(self, make_client):
        response = make_client().get('/')
        assert response.status_code == 200
        body = response.get_data(as_text=True)
        assert '<a href="README.md">README.md</a>' in body
        assert '<a href="docs/">docs/</a>' in body
        assert 'secret.md' not in body

    def test_index_html_served_for_directory(self, make_client, serve_root):
        (serve_root / "docs" / "index.html").write_text("<p>docs home</p>", encoding="utf-8")
        response = make_client().get('/docs/')
        assert response.status_code == 200
        assert response.data == b"<p>docs home</p>"

    def test_state_directory_never_served(self, make_client, serve_root):
        state = serve_root / "tsnet-state"
        state.mkdir()
        (state / "tailscaled.state").write_text("node key", encoding="utf-8")
        (state / "notes.md").write_text("# private", encoding="utf-8")

        client = make_client(private_dirs=[state])
        assert client.get('/tsnet-state/tailscaled.state').status_code == 404
        assert client.get('/tsnet-state/notes.md').status_code == 404
        assert client.get('/tsnet-state/').status_code == 404

    def test_conversion_failure_isolated(self, make_client, serve_root):
        (serve_root / "bad.md").write_bytes(b"\xff\xfe")
        client = make_client()
        assert client.get('/bad.md').status_code == 500
        assert client.get('/README.md').status_code == 200

    def test_head_request(self, make_client):
        response = make_client().head('/notes.txt')
        assert response.status_code == 200


class TestPeerAddress:
    def test_ipv4(self):
        assert peer_address({'REMOTE_ADDR': '100.64.0.1', 'REMOTE_PORT': '443'}) == '100.64.0.1:443'

    def test_ipv6_bracketed(self):
        assert peer_address({'REMOTE_ADDR': 'fd7a::1', 'REMOTE_PORT': '80'}) == '[fd7a::1]:80'

    def test_missing_port(self):
        assert peer_address({'REMOTE_ADDR': '127.0.0.1'}) == '127.0.0.1'
