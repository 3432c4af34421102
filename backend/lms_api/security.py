from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import jwt, JWTError
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlmodel import select

from .config import settings
from .db import get_session
from .models import RoleEnum, User


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

_VALID_ROLES = frozenset(role.value for role in RoleEnum)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(subject: str, expires_minutes: Optional[int] = None, extra: Optional[Dict[str, Any]] = None) -> str:
    minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    claims: Dict[str, Any] = {"sub": subject, "iat": int(datetime.now(timezone.utc).timestamp())}
    if extra:
        claims.update(extra)
    if minutes is not None and minutes > 0:
        claims["exp"] = int((datetime.now(timezone.utc) + timedelta(minutes=minutes)).timestamp())
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def issue_token(user: User) -> str:
    """Access token for *user*; the role claim pins the role the token was issued for."""
    return create_access_token(user.email, extra={"role": user.role})


def authenticate_token(token: str, session) -> User:
    not_authenticated = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated", headers={"WWW-Authenticate": "Bearer"}
    )
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        raise not_authenticated
    email = claims.get("sub")
    if not email:
        raise not_authenticated

    user = session.exec(select(User).where(User.email == email)).first()
    if not user or not user.is_active:
        raise not_authenticated
    # Tokens issued before a role change are stale
    role = claims.get("role")
    if role is not None and role != user.role:
        raise not_authenticated
    return user


def get_current_user(token: str = Depends(oauth2_scheme), session=Depends(get_session)) -> User:
    return authenticate_token(token, session)


def require_roles(*roles: str):
    unknown = set(roles) - _VALID_ROLES
    if unknown:
        raise ValueError(f"Unknown roles: {sorted(unknown)}")

    def _inner(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return user

    return _inner
