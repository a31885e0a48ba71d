"""
Peer identities and identity resolvers.
"""
from dataclasses import dataclass
from typing import Callable

# (peer address "ip:port", timeout seconds) -> Identity, raises IdentityError
IdentityResolver = Callable[[str, float], 'Identity']


@dataclass(frozen=True)
class Identity:
    login_name: str
    device: str = ''


LOCAL_IDENTITY = Identity(login_name='local-user', device='localhost')


def first_label(name: str) -> str:
    """'laptop.tail1234.ts.net.' -> 'laptop'"""
    return name.split('.', 1)[0]


def local_resolver(peer_addr: str, timeout: float) -> Identity:
    """Local mode stub: every peer is the local user."""
    return LOCAL_IDENTITY
