"""
Caller identity.

Authentication happens upstream. The gateway resolves the bearer
credential and forwards the caller's user id in the X-User-Id header,
which this service trusts.
"""

from typing import Annotated

from fastapi import Header

from tradebinder.models.failure import FailureKind, KnownError


async def get_current_user(
    x_user_id: Annotated[str | None, Header(description="Authenticated caller id")] = None,
) -> str:
    """Dependency that provides the caller's user id."""
    if x_user_id is None or not x_user_id.strip():
        raise KnownError(
            kind=FailureKind.UNAUTHENTICATED,
            message="Authentication required",
            detail="Missing X-User-Id header",
            status_code=401,
        )
    return x_user_id.strip()
