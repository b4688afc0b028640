"""ShortUrl model - a shortened URL and where it points."""
from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column
from app.models.base import Base, CreatedAtMixin, SourceAddressMixin


class ShortUrl(Base, CreatedAtMixin, SourceAddressMixin):
    __tablename__ = "url_records"

    id: Mapped[str] = mapped_column(String(16), primary_key=True)
    destination: Mapped[str] = mapped_column(Text, nullable=False)
