"""auth.py – resolves a bearer token to an opaque user identity.

Two implementations:
1. StaticTokenAuthenticator – fixed token → user id map, for local/dev and tests.
2. RemoteAuthenticator – asks the session service who owns the token.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

import requests

logger = logging.getLogger(__name__)


class BaseAuthenticator:
    """Interface other components depend on."""

    def authenticate(self, token: str) -> Optional[str]:  # pragma: no cover
        raise NotImplementedError


class StaticTokenAuthenticator(BaseAuthenticator):
    def __init__(self, tokens: Dict[str, str]) -> None:
        self._tokens = dict(tokens)

    def authenticate(self, token: str) -> Optional[str]:
        return self._tokens.get(token)


class RemoteAuthenticator(BaseAuthenticator):
    """GET {auth_url}/user with the caller's token; expects {"id": ...}."""

    def __init__(self, auth_url: str, timeout: float = 5.0) -> None:
        self._user_url = f"{auth_url.rstrip('/')}/user"
        self._timeout = timeout

    def authenticate(self, token: str) -> Optional[str]:
        if not token:
            return None
        try:
            resp = requests.get(
                self._user_url,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            logger.warning("Auth service unreachable: %s", e)
            return None
        if resp.status_code != 200:
            logger.debug("Auth rejected token (status %s)", resp.status_code)
            return None
        user_id = resp.json().get("id")
        return str(user_id) if user_id else None


def parse_bearer(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        return ""
    return authorization[len("Bearer "):].strip()
