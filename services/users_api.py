"""
Client for the remote user-management API
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from errors import NetworkError

logger = logging.getLogger(__name__)


@dataclass
class User:
    id: int
    username: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(id=data.get('id'), username=data.get('username', ''))

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "username": self.username}


def _json(response: requests.Response, fallback_error: str, expected: type = dict):
    """Decoded body of ``response``; a non-JSON body or the wrong shape becomes NetworkError"""
    try:
        payload = response.json()
    except ValueError as e:
        logger.warning(f"Non-JSON response body (HTTP {response.status_code})")
        raise NetworkError(fallback_error) from e
    if not isinstance(payload, expected):
        logger.warning(f"Unexpected {type(payload).__name__} response body (HTTP {response.status_code})")
        raise NetworkError(fallback_error)
    return payload


class UsersApiClient:
    """Thin wrapper over ``/users/`` and ``/token``; errors become NetworkError"""

    def __init__(self, base_url: str, timeout: float = 15, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, token: Optional[str]) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"} if token else {}

    def _request(self, method: str, path: str, fallback_error: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise NetworkError("Network response was not ok. Is the user API reachable?") from e

        if not response.ok:
            try:
                detail = _json(response, fallback_error).get('detail')
            except NetworkError:
                detail = None
            if not isinstance(detail, str):
                detail = fallback_error
            logger.warning(f"{method} {url} returned {response.status_code}: {detail}")
            raise NetworkError(detail, status_code=response.status_code)
        return response

    def list_users(self, token: Optional[str] = None) -> List[User]:
        error = 'Failed to fetch users.'
        response = self._request('GET', '/users/', error, headers=self._headers(token))
        items = _json(response, error, expected=list)
        if not all(isinstance(item, dict) for item in items):
            raise NetworkError(error)
        return [User.from_dict(item) for item in items]

    def create_user(self, username: str, password: str, token: Optional[str] = None) -> User:
        error = 'Failed to create user.'
        response = self._request(
            'POST', '/users/', error,
            json={"username": username, "password": password},
            headers=self._headers(token),
        )
        user = User.from_dict(_json(response, error))
        logger.info(f"Created user {user.username} (id={user.id})")
        return user

    def delete_user(self, user_id: int, token: Optional[str] = None) -> None:
        self._request('DELETE', f'/users/{user_id}', 'Failed to delete user.', headers=self._headers(token))
        logger.info(f"Deleted user id={user_id}")

    def get_token(self, username: str, password: str) -> str:
        """Exchange credentials for an access token (form-encoded, OAuth2 password flow)"""
        error = 'Invalid username or password.'
        response = self._request(
            'POST', '/token', error,
            data={"username": username, "password": password},
        )
        token = _json(response, "The login response was not understood.").get('access_token')
        if not token:
            raise NetworkError("The login response did not include an access token.")
        return token
