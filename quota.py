"""quota.py – per-user request quota and area ceiling, checked before any model call.

The usage/permission store is an external collaborator; two implementations:
1. InMemoryUsageStore – dict-based store for dev / unit-tests.
2. HttpUsageStore – REST endpoints of the account service.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import requests

from config import config
from errors import PermissionResolutionError, QuotaExceeded
from models import PermissionSet, UserContext

logger = logging.getLogger(__name__)


def lookup_permissions(table: Dict[str, Dict[str, float]], role: str, tier: str) -> Optional[PermissionSet]:
    """Exact "role:tier" entry first, then the "role:*" wildcard."""
    entry = table.get(f"{role}:{tier}") or table.get(f"{role}:*")
    if not entry:
        return None
    return PermissionSet(max_requests=int(entry["max_requests"]), max_area=float(entry["max_area"]))


class BaseUsageStore:
    """Interface the quota gate depends on."""

    def resolve_role_and_tier(self, user_id: str) -> Optional[Tuple[str, str]]:  # pragma: no cover
        raise NotImplementedError

    def resolve_permissions(self, role: str, tier: str) -> Optional[PermissionSet]:  # pragma: no cover
        raise NotImplementedError

    def get_usage(self, user_id: str) -> int:  # pragma: no cover
        raise NotImplementedError


class InMemoryUsageStore(BaseUsageStore):
    def __init__(self, permission_table: Optional[Dict[str, Dict[str, float]]] = None) -> None:
        self._roles: Dict[str, Tuple[str, str]] = {}
        self._usage: Dict[str, int] = {}
        self._table = permission_table if permission_table is not None else config.get_permission_table()

    def set_user(self, user_id: str, role: str, tier: str, requests_count: int = 0) -> None:
        self._roles[user_id] = (role, tier)
        self._usage[user_id] = requests_count

    def resolve_role_and_tier(self, user_id: str) -> Optional[Tuple[str, str]]:
        return self._roles.get(user_id)

    def resolve_permissions(self, role: str, tier: str) -> Optional[PermissionSet]:
        return lookup_permissions(self._table, role, tier)

    def get_usage(self, user_id: str) -> int:
        return self._usage.get(user_id, 0)


class HttpUsageStore(BaseUsageStore):
    """Reads role/tier and usage from the account service.

    Permissions come from the local policy table; the service only owns
    the per-user records.
    """

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 5.0,
                 permission_table: Optional[Dict[str, Dict[str, float]]] = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._timeout = timeout
        self._table = permission_table if permission_table is not None else config.get_permission_table()

    def _get(self, path: str) -> Optional[Dict]:
        resp = requests.get(f"{self._base_url}{path}", headers=self._headers, timeout=self._timeout)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    def resolve_role_and_tier(self, user_id: str) -> Optional[Tuple[str, str]]:
        data = self._get(f"/users/{user_id}/role")
        if not data or not data.get("role"):
            return None
        return data["role"], data.get("subscription_tier") or "free"

    def resolve_permissions(self, role: str, tier: str) -> Optional[PermissionSet]:
        return lookup_permissions(self._table, role, tier)

    def get_usage(self, user_id: str) -> int:
        data = self._get(f"/users/{user_id}/usage") or {}
        return int(data.get("requests_count", 0))


class QuotaGate:
    """Resolves a caller's limits and rejects over-quota requests."""

    def __init__(self, store: BaseUsageStore) -> None:
        self._store = store

    def authorize(self, user_id: str) -> UserContext:
        try:
            record = self._store.resolve_role_and_tier(user_id)
        except requests.RequestException as e:
            logger.error("Role lookup failed for user %s: %s", user_id, e)
            raise PermissionResolutionError("Failed to get role/subscription") from e
        if not record:
            raise PermissionResolutionError("Failed to get role/subscription")
        role, tier = record

        permissions = self._store.resolve_permissions(role, tier)
        if permissions is None:
            logger.warning("No permission entry for role=%s tier=%s", role, tier)
            raise PermissionResolutionError(f"No permissions defined for role '{role}' and tier '{tier}'")

        try:
            usage_count = self._store.get_usage(user_id)
        except requests.RequestException as e:
            logger.error("Usage lookup failed for user %s: %s", user_id, e)
            raise PermissionResolutionError("Failed to get usage") from e

        if usage_count >= permissions.max_requests:
            logger.info("Quota exceeded for user %s (%s/%s)", user_id, usage_count, permissions.max_requests)
            raise QuotaExceeded(usage_count, permissions.max_requests)

        return UserContext(
            user_id=user_id,
            role=role,
            subscription_tier=tier,
            max_requests=permissions.max_requests,
            max_area=permissions.max_area,
            usage_count=usage_count,
        )
