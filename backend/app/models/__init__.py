"""Import all models so SQLAlchemy metadata knows about them."""
from app.models.base import Base
from app.models.file_record import StoredFile
from app.models.url_record import ShortUrl

__all__ = ["Base", "StoredFile", "ShortUrl"]
