"""
tailserve entry point.

Serves the working directory either locally (--local) or on a tailnet
with per-request identity attribution.
"""
import argparse
import sys
import logging
from pathlib import Path

from config import SERVE_ROOT, STATE_DIR, VERSION

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='tailserve',
        description="Serve the current directory on your tailnet (or locally).",
    )
    parser.add_argument('--local', action='store_true',
                        help="run in local mode without the overlay network")
    parser.add_argument('--port', type=int, default=None,
                        help="port to listen on (local mode only; remembered for next time)")
    parser.add_argument('--hostname', default=None,
                        help="hostname to use on the tailnet (default: directory name)")
    parser.add_argument('--dir', type=Path, default=STATE_DIR,
                        help="directory to store state (default: %(default)s)")
    parser.add_argument('--open', action='store_true', dest='open_browser',
                        help="open the served URL in a browser once it is reachable")
    parser.add_argument('--verbose', action='store_true',
                        help="show all diagnostics instead of the filtered view")
    parser.add_argument('--version', action='version', version=f'%(prog)s {VERSION}')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main application entry point."""
    args = parse_args(argv)

    # Import after config is loaded
    from core.errors import StartupError
    from core.lifecycle import LifecycleController
    from core.log_filter import DiagnosticFilter, install_log_filter
    from core.modes import Announcer, OperatingMode, bootstrap
    from core.state import StateDirectory
    from server import MarkdownRenderer, create_app

    install_log_filter(DiagnosticFilter(verbose=args.verbose))

    mode = OperatingMode.LOCAL if args.local else OperatingMode.SECURED
    state = StateDirectory(args.dir)

    try:
        bundle = bootstrap(
            mode, state,
            port=args.port,
            hostname=args.hostname,
            announcer=Announcer(open_browser=args.open_browser),
        )
    except StartupError as e:
        if e.bind:
            logger.error("%s", e)
        else:
            logger.error("startup failed: %s", e)
        return 1

    renderer = MarkdownRenderer(SERVE_ROOT, style=bundle.style)
    app = create_app(SERVE_ROOT, bundle.resolver, renderer, private_dirs=[state.path])

    controller = LifecycleController(bundle, app)
    controller.install_signal_handlers()
    controller.serve()
    return 1 if controller.server_failed else 0


if __name__ == '__main__':
    sys.exit(main())
