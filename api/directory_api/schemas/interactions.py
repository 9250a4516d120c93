from typing import Literal

from pydantic import BaseModel, Field

InteractionKind = Literal["vote", "save", "flag"]


class ToggleRequest(BaseModel):
    target_id: str = Field(min_length=1, max_length=64)
    reason: str | None = Field(default=None, max_length=500)


class ToggleOut(BaseModel):
    kind: InteractionKind
    target_id: str
    active: bool
    count: int | None = None
