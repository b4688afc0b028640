"""Short URL request/response schemas."""
from datetime import datetime
from app.schemas.base import CamelModel, CamelORMModel


class UrlCreate(CamelModel):
    # Validated by the transfer service so the error shape matches other rejections
    url: str


class UrlResponse(CamelORMModel):
    id: str
    destination: str
    created_at: datetime
    short_url: str
