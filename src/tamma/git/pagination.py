"""Pagination normalizer.

Git platforms paginate differently: GitHub and Gitea send ``Link``
headers, GitLab sends ``X-Total``/``X-Next-Page``, search endpoints return
estimated totals and GraphQL-style APIs hand out opaque cursors. This
module folds all of them into one ``Page`` shape.
"""

from __future__ import annotations

import contextlib
import enum
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from tamma.core.errors import InvalidRequestError, NoMorePagesError
from tamma.core.http import header

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping, Sequence

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 30
_LINK_PART = re.compile(r'<([^>]*)>\s*;\s*rel="?([^";]+)"?')


class PaginationStrategy(enum.StrEnum):
    CURSOR = "cursor_based"
    OFFSET = "offset_based"


class TotalAccuracy(enum.StrEnum):
    EXACT = "exact"
    UNKNOWN = "unknown"
    ESTIMATED = "estimated"


@dataclass(frozen=True, slots=True)
class PageRequest:
    """Which page to fetch. Offset pages are 1-based."""

    page_size: int = DEFAULT_PAGE_SIZE
    page: int = 1
    cursor: str | None = None

    def __post_init__(self) -> None:
        if self.page_size <= 0:
            raise InvalidRequestError("pagination", "page_size must be positive")
        if self.page < 1:
            raise InvalidRequestError("pagination", "page must be >= 1")


@dataclass(frozen=True, slots=True)
class PageInfo:
    strategy: PaginationStrategy
    has_more: bool
    page_size: int
    page: int | None = None
    cursor: str | None = None  # cursor for the *next* page
    total_count: int | None = None
    total_accuracy: TotalAccuracy = TotalAccuracy.UNKNOWN


@dataclass(frozen=True, slots=True)
class Page(Generic[T]):
    items: tuple[T, ...]
    info: PageInfo

    def __iter__(self) -> Iterator[T]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True, slots=True)
class RawPage(Generic[T]):
    """What an adapter collected for one page, before normalization."""

    items: Sequence[T]
    request: PageRequest = field(default_factory=PageRequest)
    headers: Mapping[str, Any] = field(default_factory=dict)
    total_count: int | None = None
    total_is_estimate: bool = False
    next_cursor: str | None = None
    # Items the platform returned before the adapter dropped any; platform
    # counts then overcount and totals become unknown
    fetched: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))


def parse_link_header(value: str | None) -> dict[str, str]:
    """Parse an RFC 8288 ``Link`` header into ``{rel: url}``."""
    if not value:
        return {}
    links: dict[str, str] = {}
    for url, rels in _LINK_PART.findall(value):
        for rel in rels.split():
            links[rel] = url
    return links


def _int_header(headers: Mapping[str, Any], *names: str) -> int | None:
    for name in names:
        raw = header(headers, name)
        if raw is None or not raw.strip():
            continue
        with contextlib.suppress(ValueError):
            return int(raw)
    return None


def _normalize_offset(raw: RawPage[T]) -> Page[T]:
    page = raw.request.page
    page_size = raw.request.page_size
    items = tuple(raw.items)
    returned = len(items) if raw.fetched is None else raw.fetched

    total = raw.total_count
    accuracy = TotalAccuracy.UNKNOWN
    if total is not None:
        accuracy = (
            TotalAccuracy.ESTIMATED if raw.total_is_estimate else TotalAccuracy.EXACT
        )
    else:
        total = _int_header(raw.headers, "x-total", "x-total-count")
        if total is not None:
            accuracy = TotalAccuracy.EXACT

    if total is not None and accuracy is TotalAccuracy.EXACT:
        has_more = page * page_size < total
    else:
        next_page = header(raw.headers, "x-next-page")
        if next_page is not None:
            has_more = bool(next_page.strip())
        elif header(raw.headers, "link") is not None:
            has_more = "next" in parse_link_header(header(raw.headers, "link"))
        else:
            has_more = returned >= page_size

    if raw.fetched is not None:
        total = None
        accuracy = TotalAccuracy.UNKNOWN
    elif not has_more and accuracy is not TotalAccuracy.EXACT:
        # The last page pins the total down exactly
        total = (page - 1) * page_size + len(items)
        accuracy = TotalAccuracy.EXACT

    return Page(
        items=items,
        info=PageInfo(
            strategy=PaginationStrategy.OFFSET,
            has_more=has_more,
            page_size=page_size,
            page=page,
            total_count=total,
            total_accuracy=accuracy,
        ),
    )


def _normalize_cursor(raw: RawPage[T]) -> Page[T]:
    total = raw.total_count if raw.fetched is None else None
    if total is None:
        accuracy = TotalAccuracy.UNKNOWN
    elif raw.total_is_estimate:
        accuracy = TotalAccuracy.ESTIMATED
    else:
        accuracy = TotalAccuracy.EXACT

    return Page(
        items=tuple(raw.items),
        info=PageInfo(
            strategy=PaginationStrategy.CURSOR,
            has_more=raw.next_cursor is not None,
            page_size=raw.request.page_size,
            cursor=raw.next_cursor,
            total_count=total,
            total_accuracy=accuracy,
        ),
    )


def normalize(
    raw: RawPage[T],
    strategy_hint: PaginationStrategy | str = PaginationStrategy.OFFSET,
) -> Page[T]:
    """Build a ``Page`` from one platform response."""
    strategy = PaginationStrategy(strategy_hint)
    if strategy is PaginationStrategy.CURSOR:
        return _normalize_cursor(raw)
    return _normalize_offset(raw)


def next_page_request(previous: Page[Any] | PageInfo) -> PageRequest:
    """The request for the page after ``previous``.

    Raises:
        NoMorePagesError: If ``previous`` was the last page.
    """
    info = previous.info if isinstance(previous, Page) else previous
    if not info.has_more:
        raise NoMorePagesError("pagination", "No more pages")
    if info.strategy is PaginationStrategy.CURSOR:
        return PageRequest(page_size=info.page_size, cursor=info.cursor)
    return PageRequest(page_size=info.page_size, page=(info.page or 1) + 1)
