"""Page/offset arithmetic and page-navigation windows.

Counts are unsigned 64-bit quantities in the database, so arithmetic here is
bounded by ``U64_MAX``: offset computation fails closed when it would leave
that range, and navigation math saturates at the bounds instead.
"""

from __future__ import annotations

from collections.abc import Collection, Container
from dataclasses import dataclass, replace
from typing import Generic, Literal, TypeVar

from inkpress.errors import BadRequestError

U64_MAX = 2**64 - 1

T = TypeVar("T")


class NumericalOverflowError(ArithmeticError):
    """A pagination quantity left the unsigned 64-bit range."""


class PageValidationError(BadRequestError):
    def __init__(self, field: Literal["page", "size"], page: Page, rule: str) -> None:
        value = page.page if field == "page" else page.size
        label = "Page number" if field == "page" else "Page size"
        super().__init__(f"{label} {value} is invalid (allowed: {rule})")
        self.field = field
        self.page = page
        self.rule = rule


def _sat_add(a: int, b: int) -> int:
    return min(a + b, U64_MAX)


def _sat_sub(a: int, b: int) -> int:
    return max(a - b, 0)


def _describe(rule: Container[int]) -> str:
    if isinstance(rule, range):
        return f"{rule.start}..{rule.stop}"
    if isinstance(rule, Collection):
        return ", ".join(str(v) for v in sorted(rule))
    return repr(rule)


@dataclass(frozen=True)
class Offset:
    offset: int
    size: int

    def to_range(self) -> range:
        end = self.offset + self.size
        if end > U64_MAX:
            raise NumericalOverflowError("offset + size overflows")
        return range(self.offset, end)


@dataclass(frozen=True)
class Page:
    page: int  # 1-indexed
    size: int

    def to_offset(self) -> Offset:
        """``(page - 1) * size``. Page 0 underflows and is rejected."""
        if self.page < 1:
            raise NumericalOverflowError("page - 1 underflows")
        if self.size < 0:
            raise NumericalOverflowError("negative page size")
        offset = (self.page - 1) * self.size
        if offset > U64_MAX:
            raise NumericalOverflowError("(page - 1) * size overflows")
        return Offset(offset=offset, size=self.size)

    def validate(self, page_rule: Container[int], size_rule: Container[int]) -> Page:
        if self.page not in page_rule:
            raise PageValidationError("page", self, _describe(page_rule))
        if self.size not in size_rule:
            raise PageValidationError("size", self, _describe(size_rule))
        return self


@dataclass(frozen=True)
class OptionalPage:
    page: int | None = None
    size: int | None = None

    def with_defaults(self, default_page: int, default_size: int) -> Page:
        return Page(
            page=default_page if self.page is None else self.page,
            size=default_size if self.size is None else self.size,
        )


@dataclass(frozen=True)
class PageData(Generic[T]):
    items: list[T]
    count: int
    total: int | None = None  # None when the caller did not count

    @classmethod
    def from_items(cls, items: list[T]) -> PageData[T]:
        return cls(items=items, count=len(items))

    def with_total(self, total: int | None) -> PageData[T]:
        return replace(self, total=total)


@dataclass(frozen=True)
class PageNavigation:
    head: int
    prev: int | None
    current_page: int
    next: int | None
    tail: int | None  # None when the page count is unknown
    pages: list[int] | None  # None when nav_len is 0

    @classmethod
    def build(
        cls,
        data: PageData[T],
        page: Page,
        nav_len: int,
        nav_max_page: int | None = None,
    ) -> PageNavigation:
        """Navigation for ``page`` with a window of at most ``nav_len`` page numbers.

        The window is left-aligned around pages in the first half and
        right-aligned around pages in the second half, clamped to the page
        count. An unknown total leaves the page count unbounded (no tail)
        unless ``nav_max_page`` caps it.
        """
        current = page.page

        if page.size == 0:
            page_n = U64_MAX
        else:
            total = U64_MAX if data.total is None else data.total
            page_n = _sat_add(_sat_sub(total, 1) // page.size, 1)
        if nav_max_page is not None:
            page_n = min(page_n, nav_max_page)
        page_n = max(page_n, 1)

        pages: list[int] | None = None
        if nav_len > 0:
            p = min(max(current, 1), page_n)
            if (p - 1) < (page_n - p):
                start = max(_sat_sub(p, nav_len // 2), 1)
                end = min(_sat_add(_sat_sub(start, 1), nav_len), page_n)
            else:
                end = min(_sat_add(p, nav_len // 2), page_n)
                start = max(_sat_add(_sat_sub(end, nav_len), 1), 1)
            pages = list(range(start, end + 1))

        if nav_max_page is None and (data.total is None or page.size == 0):
            tail = None
        else:
            tail = page_n

        return cls(
            head=1,
            prev=min(current - 1, page_n) if current >= 2 else None,
            current_page=current,
            next=max(current + 1, 1) if current <= page_n - 1 else None,
            tail=tail,
            pages=pages,
        )
