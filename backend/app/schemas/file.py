"""File request/response schemas."""
from datetime import datetime
from app.schemas.base import CamelORMModel


class FileResponse(CamelORMModel):
    id: str
    file_name: str
    mime_type: str
    size_bytes: int
    created_at: datetime
    download_url: str
