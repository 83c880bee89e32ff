import pytest
import requests

from config import DEFAULT_PERMISSION_TABLE
from errors import PermissionResolutionError, QuotaExceeded
from quota import HttpUsageStore, InMemoryUsageStore, QuotaGate, lookup_permissions


def test_lookup_exact_tier():
    perms = lookup_permissions(DEFAULT_PERMISSION_TABLE, "user", "free")
    assert perms.max_requests == 10
    assert perms.max_area == 100.0


def test_lookup_falls_back_to_role_wildcard():
    perms = lookup_permissions(DEFAULT_PERMISSION_TABLE, "admin", "enterprise")
    assert perms.max_requests == 100000


def test_lookup_unknown_role():
    assert lookup_permissions(DEFAULT_PERMISSION_TABLE, "guest", "free") is None


def test_authorize_returns_user_context():
    store = InMemoryUsageStore(DEFAULT_PERMISSION_TABLE)
    store.set_user("u-1", "user", "basic", requests_count=5)
    user = QuotaGate(store).authorize("u-1")
    assert user.user_id == "u-1"
    assert user.subscription_tier == "basic"
    assert user.max_requests == 100
    assert user.max_area == 1000.0
    assert user.usage_count == 5


@pytest.mark.parametrize("usage,allowed", [(0, True), (9, True), (10, False), (11, False)])
def test_quota_boundary(usage, allowed):
    store = InMemoryUsageStore(DEFAULT_PERMISSION_TABLE)
    store.set_user("u-1", "user", "free", requests_count=usage)
    gate = QuotaGate(store)
    if allowed:
        assert gate.authorize("u-1").usage_count == usage
    else:
        with pytest.raises(QuotaExceeded) as exc:
            gate.authorize("u-1")
        assert exc.value.http_status == 403
        assert exc.value.message == "Request limit exceeded"
        assert exc.value.details == {"usage_count": usage, "max_requests": 10}


def test_missing_user_record():
    gate = QuotaGate(InMemoryUsageStore(DEFAULT_PERMISSION_TABLE))
    with pytest.raises(PermissionResolutionError):
        gate.authorize("nobody")


def test_missing_policy_entry():
    store = InMemoryUsageStore({"user:free": {"max_requests": 10, "max_area": 100}})
    store.set_user("u-1", "user", "pro")
    with pytest.raises(PermissionResolutionError) as exc:
        QuotaGate(store).authorize("u-1")
    assert "'user'" in exc.value.message and "'pro'" in exc.value.message


def test_http_store_reads_role_and_usage(requests_mocker):
    requests_mocker.get("http://accounts/users/u-7/role", json={"role": "user", "subscription_tier": "pro"})
    requests_mocker.get("http://accounts/users/u-7/usage", json={"requests_count": 42})
    store = HttpUsageStore("http://accounts/", api_key="k", permission_table=DEFAULT_PERMISSION_TABLE)
    user = QuotaGate(store).authorize("u-7")
    assert user.max_requests == 1000
    assert user.usage_count == 42
    assert requests_mocker.request_history[0].headers["Authorization"] == "Bearer k"


def test_http_store_unknown_user(requests_mocker):
    requests_mocker.get("http://accounts/users/u-7/role", status_code=404)
    store = HttpUsageStore("http://accounts", permission_table=DEFAULT_PERMISSION_TABLE)
    with pytest.raises(PermissionResolutionError):
        QuotaGate(store).authorize("u-7")


def test_http_store_outage_is_permission_error(requests_mocker):
    requests_mocker.get("http://accounts/users/u-7/role", exc=requests.exceptions.ConnectTimeout)
    store = HttpUsageStore("http://accounts", permission_table=DEFAULT_PERMISSION_TABLE)
    with pytest.raises(PermissionResolutionError):
        QuotaGate(store).authorize("u-7")
