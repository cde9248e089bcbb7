from pydantic import BaseModel
from typing import Optional

from app.schemas.special_collection import RequestOut


class CheckoutStartOut(BaseModel):
    ok: bool = True
    checkoutUrl: str
    sessionId: str


class CheckoutSyncOut(BaseModel):
    ok: bool = True
    status: str  # success | pending | failed | cancelled
    message: str
    request: Optional[RequestOut] = None
