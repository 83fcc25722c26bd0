from __future__ import annotations

from pydantic import BaseModel, field_validator


class AuthContext(BaseModel):
    """Dev auth context extracted from request headers.

    Only the identity is trusted from the caller; capabilities are always
    resolved from the directory.
    """

    identity: str

    @field_validator("identity")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return value.strip().lower()
