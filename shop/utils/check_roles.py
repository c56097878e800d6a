# shop/utils/check_roles.py
from fastapi import HTTPException
from typing import Callable, Iterable, Optional
from functools import wraps

ADMIN_ROLE = "admin"


def _role_of(user) -> str:
    return (getattr(user, "role", None) or "").lower()


def is_admin(user) -> bool:
    return user is not None and _role_of(user) == ADMIN_ROLE


def owner_scope(user) -> Optional[int]:
    """Id to filter owned records by, or None when the caller may see everyone's."""
    return None if is_admin(user) else user.id


def require_role(roles: Iterable[str]):
    """Route decorator; the route receives the caller as `_user=Depends(get_current_user)`."""
    allowed = {role.lower() for role in roles}

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, _user, **kwargs):
            if _user is None:
                raise HTTPException(status_code=401, detail="User not authenticated")
            if _role_of(_user) not in allowed:
                raise HTTPException(status_code=403, detail=f"Requires role: {', '.join(sorted(allowed))}")
            return await func(*args, _user=_user, **kwargs)
        return wrapper
    return decorator
