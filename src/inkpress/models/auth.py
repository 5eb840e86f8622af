from __future__ import annotations

from pydantic import BaseModel


class Admin(BaseModel):
    """An authenticated administrator, as resolved by the HTTP layer."""

    username: str
