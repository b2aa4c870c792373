# planner_core/schemas/token.py
from typing import Optional

from pydantic import BaseModel, Field


class TokenPayload(BaseModel):
    sub: str  # requester id
    org_id: Optional[str] = Field(default=None, alias="orgId")
    exp: Optional[int] = None

    model_config = {
        "populate_by_name": True,
        "from_attributes": True,
    }
