from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from shop.core.security import create_access_token, decode_token
from shop.utils.check_roles import require_role, is_admin, owner_scope

admin = SimpleNamespace(id=1, username="admin", role="Admin")
customer = SimpleNamespace(id=7, username="lan", role="user")


def test_token_round_trip():
    token = create_access_token({"sub": "lan"}, token_version=3)
    payload = decode_token(token)
    assert payload["sub"] == "lan"
    assert payload["token_version"] == 3
    assert payload["type"] == "access"


def test_expired_or_garbled_token():
    expired = create_access_token({"sub": "lan"}, token_version=1, expires_delta=timedelta(seconds=-5))
    with pytest.raises(ValueError):
        decode_token(expired)
    with pytest.raises(ValueError):
        decode_token("not-a-token")


def test_owner_scope():
    assert is_admin(admin)
    assert not is_admin(customer)
    assert not is_admin(None)
    assert owner_scope(admin) is None
    assert owner_scope(customer) == 7


@pytest.mark.asyncio
async def test_require_role():
    @require_role(["admin"])
    async def admin_only(value, _user=None):
        return value, _user.id

    assert await admin_only("ok", _user=admin) == ("ok", 1)
    with pytest.raises(HTTPException) as exc:
        await admin_only("ok", _user=customer)
    assert exc.value.status_code == 403
    with pytest.raises(HTTPException) as exc:
        await admin_only("ok", _user=None)
    assert exc.value.status_code == 401
