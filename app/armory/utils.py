from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

MAX_PER_PAGE = 100


@dataclass(frozen=True)
class ListParams:
    page: int
    per_page: int
    sort_by: str
    sort_order: str
    search: str

    def query_args(self, **overrides: Any) -> dict[str, Any]:
        """Query-string args for links that keep the current list state."""
        args: dict[str, Any] = {
            "page": self.page,
            "perPage": self.per_page,
            "sortBy": self.sort_by,
            "sortOrder": self.sort_order,
        }
        if self.search:
            args["search"] = self.search
        args.update(overrides)
        return args


@dataclass
class Page:
    items: list
    total: int
    page: int
    per_page: int
    total_pages: int = field(init=False)

    def __post_init__(self) -> None:
        self.total_pages = math.ceil(self.total / self.per_page) if self.per_page else 0

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def first_index(self) -> int:
        return 0 if self.total == 0 else (self.page - 1) * self.per_page + 1

    @property
    def last_index(self) -> int:
        return min(self.page * self.per_page, self.total)


def _positive_int(raw: str | None, default: int) -> int:
    try:
        value = int(raw) if raw not in (None, "") else default
    except ValueError:
        return default
    return value if value > 0 else default


def parse_list_params(
    args,
    *,
    allowed_sorts: tuple[str, ...],
    default_sort: str,
    default_order: str = "asc",
    default_per_page: int = 10,
) -> ListParams:
    """Read page/perPage/sortBy/sortOrder/search; unknown sort fields fall back to the default."""
    sort_by = (args.get("sortBy") or "").strip()
    if sort_by not in allowed_sorts:
        sort_by = default_sort
    sort_order = (args.get("sortOrder") or "").strip().lower()
    if sort_order not in ("asc", "desc"):
        sort_order = default_order
    return ListParams(
        page=_positive_int(args.get("page"), 1),
        per_page=min(_positive_int(args.get("perPage"), default_per_page), MAX_PER_PAGE),
        sort_by=sort_by,
        sort_order=sort_order,
        search=(args.get("search") or "").strip(),
    )


def paginate(query, params: ListParams) -> Page:
    total = query.order_by(None).count()
    items = query.offset((params.page - 1) * params.per_page).limit(params.per_page).all()
    return Page(items=items, total=total, page=params.page, per_page=params.per_page)


def parse_date(s: str | None) -> date | None:
    """Parse YYYY-MM-DD date string."""
    if not s:
        return None
    s = s.strip()
    if not s:
        return None
    return datetime.strptime(s, "%Y-%m-%d").date()
