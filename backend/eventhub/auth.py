"""Authentication boundary for the FastAPI application.

Tokens are issued elsewhere; this module only validates bearer JWTs, loads
the caller and turns it into the ``Actor`` value the registration core works
with. ``create_access_token`` is kept for tooling and tests.
"""

######### Imports #########

import datetime
import logging

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from . import store
from .enums import ActorRole, normalized_value
from .errors import NotFoundError, ValidationError
from .schemas import Actor
from .settings import get_settings

######### Logging and Security Configuration #########

auth_logger = logging.getLogger('auth')
# auto_error=False keeps the Authorize button in the docs while letting us
# return our own 401 body
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/login", auto_error=False)

JWT_ALGO = 'HS256'


######### Tokens #########

def create_access_token(data: dict, expires_minutes: int | None = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    now_dt = datetime.datetime.now(datetime.timezone.utc)
    exp_minutes = expires_minutes if isinstance(expires_minutes, int) and expires_minutes > 0 else settings.access_token_minutes
    to_encode.update({"exp": now_dt + datetime.timedelta(minutes=exp_minutes), "iat": now_dt})
    if settings.jwt_issuer:
        to_encode["iss"] = settings.jwt_issuer
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    settings = get_settings()
    payload = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[JWT_ALGO],
        options={"require": ["exp", "sub"]},
    )
    if settings.jwt_issuer and payload.get("iss") != settings.jwt_issuer:
        raise JWTError("issuer mismatch")
    return payload


######### Dependencies #########

async def get_current_user(request: Request, token: str = Depends(oauth2_scheme)):
    """Return the user document behind the bearer token (header first, then `access_token` cookie)."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        token = request.cookies.get('access_token')
        if not token:
            raise credentials_exception
    try:
        payload = decode_token(token)
    except JWTError as exc:
        auth_logger.info('auth.token.invalid error=%s', exc)
        raise credentials_exception from exc
    try:
        user = await store.get_user(payload["sub"])
    except (NotFoundError, ValidationError) as exc:
        auth_logger.info('auth.token.unknown_subject sub=%s', payload.get("sub"))
        raise credentials_exception from exc
    if user.get('is_manual') or user.get('deleted_at') is not None:
        raise credentials_exception
    return user


async def get_actor(current_user=Depends(get_current_user)) -> Actor:
    # unknown or missing roles degrade to a plain user
    role = normalized_value(ActorRole, current_user.get('role'), default=ActorRole.user.value)
    return Actor(id=str(current_user['_id']), role=role)


def require_role(*roles: str):
    """Factory returning a dependency that admits only actors with one of `roles`.

    Usage: Depends(require_role('admin')) or Depends(require_role('organizer', 'admin')).
    """
    allowed = {ActorRole.normalize(r) for r in roles}

    def _dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Forbidden')
        return actor

    return _dependency


require_admin = require_role('admin')
require_staff = require_role('organizer', 'admin')
