"""StoredFile model - file metadata (actual bytes live in a storage backend)."""
from sqlalchemy import String, BigInteger
from sqlalchemy.orm import Mapped, mapped_column
from app.models.base import Base, CreatedAtMixin, SourceAddressMixin


class StoredFile(Base, CreatedAtMixin, SourceAddressMixin):
    __tablename__ = "file_records"

    id: Mapped[str] = mapped_column(String(16), primary_key=True)
    storage_identifier: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    backend_tag: Mapped[str] = mapped_column(String(16), nullable=False)
