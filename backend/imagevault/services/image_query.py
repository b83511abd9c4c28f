"""Keyword matching, ordering and pagination shared by every metadata store.

A record matches a query when any token is a case-insensitive substring of
any of its keywords or of its original file name. Results are ordered newest
first. Stores that filter server-side must return the same records.
"""
import math
from dataclasses import dataclass
from typing import Iterable, Optional

from imagevault.models.image_record import ImageRecord

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 12
MAX_LIMIT = 50


@dataclass
class PageRequest:
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class Pagination:
    current_page: int
    total_pages: int
    total_images: int
    has_next: bool
    has_prev: bool


def _to_int(value, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def page_request(page=None, limit=None) -> PageRequest:
    """Parse raw page/limit values. Unparseable values use the defaults,
    `limit` is clamped into [1, MAX_LIMIT] and `page` to at least 1."""
    page_num = max(1, _to_int(page, DEFAULT_PAGE))
    limit_num = min(MAX_LIMIT, max(1, _to_int(limit, DEFAULT_LIMIT)))
    return PageRequest(page=page_num, limit=limit_num)


def tokenize(query: Optional[str]) -> list[str]:
    """Lowercase the query and split it on whitespace."""
    if not query:
        return []
    return query.lower().split()


def matches(record: ImageRecord, tokens: list[str]) -> bool:
    if not tokens:
        return True
    keywords = [k.lower() for k in record.keywords]
    name = record.original_name.lower()
    return any(
        token in name or any(token in keyword for keyword in keywords)
        for token in tokens
    )


def sort_newest_first(records: Iterable[ImageRecord]) -> list[ImageRecord]:
    return sorted(records, key=lambda r: r.upload_date, reverse=True)


def filter_records(records: Iterable[ImageRecord], tokens: list[str]) -> list[ImageRecord]:
    """Matching records, newest first."""
    return sort_newest_first(r for r in records if matches(r, tokens))


def build_pagination(request: PageRequest, total: int) -> Pagination:
    return Pagination(
        current_page=request.page,
        total_pages=math.ceil(total / request.limit),
        total_images=total,
        has_next=request.page * request.limit < total,
        has_prev=request.page > 1,
    )
