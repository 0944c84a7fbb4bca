# FastAPI dependencies: current actor, request context, throttling
import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from credit_manager.database import get_db
from credit_manager.exceptions import AuthenticationError, RateLimitExceededError

from . import models
from .schemas import RequestContext
from .security import decode_access_token
from .services import is_locked, user_service
from .throttling import auth_throttle, sensitive_operation_throttle

security_logger = logging.getLogger("credit_manager.security")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        path=request.url.path,
    )


def resolve_actor(db: Session, token: Optional[str]) -> models.User:
    if not token:
        raise AuthenticationError("Not authenticated")
    payload = decode_access_token(token)
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError) as e:
        raise AuthenticationError("Invalid token payload") from e

    user = user_service.get_user(db, user_id)
    if not user:
        raise AuthenticationError("User no longer exists")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated")
    if is_locked(user):
        raise AuthenticationError("Account is temporarily locked")
    return user


async def get_current_actor(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> models.User:
    try:
        return resolve_actor(db, token)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_optional_actor(token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> Optional[models.User]:
    # Authentication is optional here: any token problem just means "no actor"
    if not token:
        return None
    try:
        return resolve_actor(db, token)
    except AuthenticationError:
        return None


def sensitive_operation_guard(max_attempts: Optional[int] = None):
    async def guard(
        context: RequestContext = Depends(get_request_context),
        actor: models.User = Depends(get_current_actor),
    ):
        key = sensitive_operation_throttle.make_key(context.ip_address, actor.id)
        try:
            sensitive_operation_throttle.check(key, max_attempts=max_attempts)
        except RateLimitExceededError as e:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=e.message,
                headers={"Retry-After": str(e.retry_after)},
            )
    return guard


async def auth_rate_guard(context: RequestContext = Depends(get_request_context)):
    """Per-IP limit for login and registration, before any credential checks."""
    key = auth_throttle.make_key(context.ip_address, None)
    try:
        auth_throttle.check(key)
    except RateLimitExceededError as e:
        security_logger.warning(f"Auth rate limit exceeded for {context.ip_address} on {context.path}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many authentication attempts, please try again later.",
            headers={"Retry-After": str(e.retry_after)},
        )
