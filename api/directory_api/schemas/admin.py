from pydantic import BaseModel


class CommentModerationOut(BaseModel):
    ok: bool = True
    comment_id: str
    resolved_flags: int | None = None


class ReconcileOut(BaseModel):
    count: int
