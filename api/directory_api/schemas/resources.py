from datetime import datetime

from pydantic import BaseModel

from directory_api.schemas.submissions import Pricing


class ResourceListOut(BaseModel):
    id: str
    slug: str
    title: str
    description: str | None = None
    url: str
    logo_url: str | None = None
    pricing: Pricing = "unknown"
    category_id: str | None = None
    created_at: datetime
    updated_at: datetime
