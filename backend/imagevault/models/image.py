"""ImageRow model - image metadata (actual bytes live in the storage backend)."""
from datetime import datetime
from sqlalchemy import String, BigInteger, DateTime, JSON, Index, Text
from sqlalchemy.orm import Mapped, mapped_column
from imagevault.models.base import Base


class ImageRow(Base):
    __tablename__ = "images"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    storage_key: Mapped[str] = mapped_column(String(1000), nullable=False)
    original_name: Mapped[str] = mapped_column(String(500), nullable=False)
    keywords: Mapped[list] = mapped_column(JSON, default=list)
    upload_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)

    # Lowercased copies used for keyword search. Keywords are joined with a
    # newline; search tokens never contain whitespace so a LIKE match cannot
    # straddle two keywords.
    name_search: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    keywords_search: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        Index("idx_images_upload_date", "upload_date"),
    )
