from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from classwork.db.engine import async_session_factory
from classwork.models.principal import Principal
from classwork.repos.classwork_store import ClassworkStore, InMemoryClassworkStore
from classwork.repos.pg_classwork_store import PgClassworkStore
from classwork.services import token_service
from classwork.services.cache import CacheService, cache_service
from classwork.services.submission_workflow import (
    Clock,
    SubmissionWorkflow,
    utc_now,
)

logger = logging.getLogger(__name__)

# Tokens are issued by the auth service; tokenUrl only feeds the OpenAPI docs.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")

# Serves every request when DATABASE_URL is not configured.
memory_store = InMemoryClassworkStore()


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    """Extract and validate the JWT bearer token. Returns a Principal.

    This is the service's identity provider: every endpoint receives the
    actor from here and passes it explicitly into the service layer.
    """
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    principal = Principal(
        user_id=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )
    logger.debug(
        "Token validated for user=%s roles=%s", principal.user_id, principal.roles
    )
    return principal


def require_any_role(roles: set[str]):
    """Dependency factory: demand at least one of the given roles.

    Usage: Depends(require_any_role({"teacher"}))
    """

    def _guard(
        principal: Annotated[Principal, Depends(require_user)],
    ) -> Principal:
        if not principal.has_any_role(roles):
            logger.warning(
                "Access denied: user=%s has none of roles=%s",
                principal.user_id,
                roles,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "forbidden", "message": "Insufficient permissions"},
            )
        return principal

    return _guard


async def get_store() -> AsyncGenerator[ClassworkStore, None]:
    """Yield the request's store.

    With DATABASE_URL set, one session per request: committed when the
    endpoint returns, rolled back if it raises.  submit and grade commit
    earlier, before they clear the results cache.
    """
    if async_session_factory is None:
        yield memory_store
        return

    async with async_session_factory() as session:
        try:
            yield PgClassworkStore(session)
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_cache() -> CacheService:
    return cache_service


def get_clock() -> Clock:
    """Overridden in tests to pin "now" for due-date checks."""
    return utc_now


def get_workflow(
    store: Annotated[ClassworkStore, Depends(get_store)],
    clock: Annotated[Clock, Depends(get_clock)],
    cache: Annotated[CacheService, Depends(get_cache)],
) -> SubmissionWorkflow:
    return SubmissionWorkflow(store, clock=clock, cache=cache)
