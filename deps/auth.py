# deps/auth.py
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from config import JWT_ALGORITHM, SECRET_KEY
from database import get_db
from errors import UnauthorizedError
from models import User

ACCESS_TOKEN_EXPIRE_MINUTES = 60

# tokens are issued by the auth service; here they are only verified
bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    to_encode = data.copy()
    to_encode["exp"] = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode(to_encode, SECRET_KEY, algorithm=JWT_ALGORITHM)


def get_current_user(
    db: Session = Depends(get_db),
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> User:
    if creds is None or not creds.credentials:
        raise UnauthorizedError()
    try:
        payload = jwt.decode(creds.credentials, SECRET_KEY, algorithms=[JWT_ALGORITHM])
        sub = payload.get("sub")
        if sub is None:
            raise UnauthorizedError("Could not validate credentials")
        user_id = int(sub)
    except (JWTError, ValueError):
        raise UnauthorizedError("Could not validate credentials")

    user = db.get(User, user_id)
    if not user or not user.is_active:
        raise UnauthorizedError("Could not validate credentials")
    return user
