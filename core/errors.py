"""
Exception hierarchy.
"""


class TailserveError(Exception):
    """Base class for all tailserve errors."""


class StartupError(TailserveError):
    """
    The server cannot accept any traffic.

    Raised for listener bind failures, state directory creation failures
    and overlay provider initialization failures.
    """

    def __init__(self, message: str, bind: bool = False):
        super().__init__(message)
        self.bind = bind


class IdentityError(TailserveError):
    """A peer address could not be mapped to an identity."""


class ProviderError(TailserveError):
    """The overlay network provider failed to answer."""
