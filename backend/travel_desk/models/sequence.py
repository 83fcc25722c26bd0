from __future__ import annotations

from sqlmodel import Field, SQLModel


class RequestSequence(SQLModel, table=True):
    """Per-day counter behind human-readable request ids."""

    __tablename__ = "request_sequence"

    key: str = Field(primary_key=True, max_length=16)  # "<year>-<dayOfYear:04d>"
    value: int = Field(default=0, sa_column_kwargs={"server_default": "0"})
