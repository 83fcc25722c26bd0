# ruff: noqa: B008
from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header

from travel_desk.schemas.auth import AuthContext


async def get_auth_context(
    x_user_email: str = Header(min_length=3, max_length=320),
) -> AuthContext:
    """Extract dev auth context from request headers."""
    return AuthContext(identity=x_user_email)


AuthDep = Annotated[AuthContext, Depends(get_auth_context)]
