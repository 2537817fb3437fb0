# deps/authz.py
from fastapi import Depends

from deps.auth import get_current_user
from errors import ForbiddenError
from models import User


def require_roles(*roles: str):
    """Dependency factory: the caller's role must be one of ``roles``."""
    def dep(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            need = ", ".join(roles)
            raise ForbiddenError(f"Need any of: {need}")
        return user
    return dep
