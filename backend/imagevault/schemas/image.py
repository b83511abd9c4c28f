"""Image request/response schemas."""
import json
from datetime import datetime
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from pydantic import ValidationInfo, field_validator

from imagevault.errors import ValidationError
from imagevault.schemas.base import CamelModel


class ImageResponse(CamelModel):
    id: str
    storage_key: str
    original_name: str
    keywords: list[str] = []
    upload_date: datetime
    file_size: int
    content_type: str
    url: str


class PaginationResponse(CamelModel):
    current_page: int
    total_pages: int
    total_images: int
    has_next: bool
    has_prev: bool


class FailedUpload(CamelModel):
    original_name: str
    error: str
    details: Optional[str] = None


class UploadForm(CamelModel):
    """Form fields accompanying an upload.

    Limits come from the validation context so they follow Settings:
    ``UploadForm.model_validate(data, context={"max_keywords": 10, "max_keyword_length": 50})``.
    """
    keywords: list[str] = []

    @field_validator("keywords")
    @classmethod
    def check_keywords(cls, v: list[str], info: ValidationInfo) -> list[str]:
        context = info.context or {}
        max_keywords = context.get("max_keywords", 10)
        max_length = context.get("max_keyword_length", 50)

        cleaned = [k.strip() for k in v]
        if len(cleaned) > max_keywords:
            raise ValueError(f"keywords must contain less than or equal to {max_keywords} items")
        for keyword in cleaned:
            if not keyword:
                raise ValueError("keywords must not contain empty values")
            if len(keyword) > max_length:
                raise ValueError(
                    f"keyword '{keyword[:20]}...' must be less than or equal to {max_length} characters long"
                )
        return cleaned


def parse_keywords(raw: Optional[str], max_keywords: int, max_keyword_length: int) -> list[str]:
    """Decode the JSON-encoded `keywords` form field and validate it.

    Anything that is not a JSON array is treated as no keywords.
    Raises ValidationError when the array breaks the keyword limits.
    """
    keywords: list = []
    if raw:
        try:
            decoded = json.loads(raw)
        except (TypeError, ValueError):
            decoded = []
        if isinstance(decoded, list):
            keywords = decoded

    try:
        form = UploadForm.model_validate(
            {"keywords": keywords},
            context={"max_keywords": max_keywords, "max_keyword_length": max_keyword_length},
        )
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        raise ValidationError(first["msg"].removeprefix("Value error, ")) from exc
    return form.keywords
