"""
Identity-aware request dispatcher.

Every request is attributed to an identity, logged once, then either
rendered (Markdown) or served as-is from the working directory.
Unattributed requests are logged and served: the overlay network, not
this dispatcher, is the access boundary.
"""
import os
from pathlib import Path
from typing import Iterable, List, Optional
import logging

from flask import Flask, abort, redirect, render_template, request, send_from_directory
from werkzeug.security import safe_join

from config import IDENTITY_TIMEOUT
from core.access_log import AccessLogger
from core.errors import IdentityError
from core.security import sanitize_path
from core.identity import Identity, IdentityResolver
from .renderer import MarkdownRenderer

logger = logging.getLogger(__name__)


def peer_address(environ) -> str:
    """'ip:port' of the connection, IPv6 addresses bracketed."""
    host = environ.get('REMOTE_ADDR', '')
    port = environ.get('REMOTE_PORT')
    if not port:
        return host
    if ':' in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def resolve_identity(resolver: IdentityResolver, peer_addr: str,
                     timeout: float) -> Optional[Identity]:
    """Identity of the peer, or None. Never raises on lookup failure."""
    try:
        return resolver(peer_addr, timeout)
    except IdentityError as e:
        logger.debug("Identity resolution for %s failed: %s", peer_addr, e)
        return None


def _is_within(path: Path, parents: Iterable[Path]) -> bool:
    for parent in parents:
        try:
            path.relative_to(parent)
            return True
        except ValueError:
            continue
    return False


def list_directory(directory: Path) -> List[str]:
    entries = []
    for entry in sorted(directory.iterdir(), key=lambda p: p.name):
        entries.append(entry.name + '/' if entry.is_dir() else entry.name)
    return entries


def serve_static(root: Path, filepath: str):
    """
    Serve filepath below root like a plain directory file server.

    Directories redirect to their slash form, then serve index.html or a
    listing. Escapes and missing files are 404.
    """
    joined = safe_join(str(root), filepath)
    if joined is None:
        abort(404)

    target = Path(joined)

    if target.is_dir():
        if not request.path.endswith('/'):
            location = request.path + '/'
            if request.query_string:
                location += '?' + request.query_string.decode('latin-1')
            return redirect(location, code=301)

        if (target / 'index.html').is_file():
            return send_from_directory(root, os.path.join(filepath, 'index.html'))

        try:
            entries = list_directory(target)
        except OSError as e:
            logger.error("Directory listing failed for %s: %s", filepath, e)
            abort(500)
        return render_template('listing.html', path=request.path, entries=entries)

    return send_from_directory(root, filepath)


def create_app(root: Path, resolver: IdentityResolver, renderer: MarkdownRenderer,
               access_logger: Optional[AccessLogger] = None,
               private_dirs: Iterable[Path] = (),
               identity_timeout: float = IDENTITY_TIMEOUT) -> Flask:
    """
    Build the dispatcher application.

    Args:
        root: Absolute directory to serve
        resolver: Maps (peer address, timeout) to an Identity
        renderer: Markdown renderer
        access_logger: Access line writer
        private_dirs: Directories below root that are never served
        identity_timeout: Seconds allowed for one identity lookup
    """
    app = Flask(__name__, template_folder='templates', static_folder=None)
    app.config['DEBUG'] = False

    access = access_logger or AccessLogger()
    private = [p.resolve() for p in private_dirs]

    @app.route('/', defaults={'filepath': ''}, methods=['GET', 'HEAD'])
    @app.route('/<path:filepath>', methods=['GET', 'HEAD'])
    def dispatch(filepath: str):
        who = resolve_identity(resolver, peer_address(request.environ), identity_timeout)
        access.log_access(who, request.path)

        resolved = sanitize_path(filepath, root)
        if resolved is not None and _is_within(resolved, private):
            abort(404)

        response = renderer.render(filepath, request.args)
        if response is not None:
            return response

        return serve_static(root, filepath)

    @app.errorhandler(500)
    def internal_error_handler(e):
        """Handle internal errors without leaking info."""
        logger.error("Internal server error: %s", e)
        return "Internal server error", 500

    return app
