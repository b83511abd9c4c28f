from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class ImageRecord:
    """Metadata for one stored image.

    Attributes:
        id: UUID4 string assigned at upload.
        storage_key: Backend locator of the optimized bytes.
        original_name: File name supplied by the client.
        keywords: Tags supplied at upload (0..10).
        upload_date: Timezone-aware UTC creation time; the sort key.
        file_size: Byte length of the stored (optimized) content.
        content_type: MIME type of the stored content.
    """

    id: str
    storage_key: str
    original_name: str
    upload_date: datetime
    file_size: int
    content_type: str
    keywords: list[str] = field(default_factory=list)
