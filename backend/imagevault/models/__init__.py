"""Import all models so SQLAlchemy metadata knows about them."""
from imagevault.models.base import Base
from imagevault.models.image import ImageRow
from imagevault.models.image_record import ImageRecord

__all__ = ["Base", "ImageRow", "ImageRecord"]
