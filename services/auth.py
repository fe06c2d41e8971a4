"""
Session state and route guarding.

Credentials are never checked here: the user API's ``/token`` endpoint
decides, and the resulting access token is kept in the Flask session.
"""
import logging
from dataclasses import dataclass
from typing import MutableMapping, Optional

logger = logging.getLogger(__name__)

LOGIN_ROUTE = '/login'
HOME_ROUTE = '/'
PUBLIC_ROUTES = {LOGIN_ROUTE, '/health', '/auth/status'}
PUBLIC_PREFIXES = ('/static/',)


@dataclass(frozen=True)
class SessionState:
    username: Optional[str] = None
    access_token: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token)

    @classmethod
    def from_session(cls, session: MutableMapping) -> "SessionState":
        return cls(username=session.get('username'), access_token=session.get('access_token'))


@dataclass(frozen=True)
class RouteDecision:
    allow: bool
    redirect_to: Optional[str] = None


ALLOW = RouteDecision(allow=True)


def is_public(path: str) -> bool:
    return path in PUBLIC_ROUTES or path.startswith(PUBLIC_PREFIXES)


def guard_route(path: str, state: SessionState) -> RouteDecision:
    """Decide whether a request for ``path`` may proceed"""
    if state.is_authenticated and path == LOGIN_ROUTE:
        return RouteDecision(allow=False, redirect_to=HOME_ROUTE)
    if is_public(path) or state.is_authenticated:
        return ALLOW
    return RouteDecision(allow=False, redirect_to=LOGIN_ROUTE)


def sign_in(session: MutableMapping, username: str, access_token: str) -> SessionState:
    session['username'] = username
    session['access_token'] = access_token
    logger.info(f"User logged in: {username}")
    return SessionState(username=username, access_token=access_token)


def sign_out(session: MutableMapping) -> None:
    username = session.get('username', 'unknown')
    session.pop('username', None)
    session.pop('access_token', None)
    logger.info(f"User logged out: {username}")
