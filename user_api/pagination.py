"""Offset pagination and sorting for the user listing."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlencode

from .config import DEFAULT_PER_PAGE
from .database import SORTABLE_FIELDS, SQLITE_MAX_INTEGER, Database
from .models import User

logger = logging.getLogger("userapi.pagination")

DEFAULT_SORT_FIELD = "id"

_TRUTHY = {"1", "true", "yes", "on"}


def _parse_page(value: Optional[str]) -> int:
    if value is None:
        return 1
    try:
        page = int(value.strip())
    except ValueError:
        return 1
    return page if page >= 1 else 1


@dataclass(frozen=True)
class PageRequest:
    """Sort key, direction and page window for a single listing request."""

    sort_by: str = DEFAULT_SORT_FIELD
    descending: bool = False
    page: int = 1
    per_page: int = DEFAULT_PER_PAGE

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    @staticmethod
    def from_query(params: Mapping[str, str], *, per_page: int = DEFAULT_PER_PAGE) -> "PageRequest":
        """Build a request from raw query parameters.

        Unknown sort fields fall back to ``id`` instead of being rejected, and
        ``page`` values that are missing, malformed or below one mean page 1.
        """
        sort_by = (params.get("sort_by") or DEFAULT_SORT_FIELD).strip()
        if sort_by not in SORTABLE_FIELDS:
            logger.debug("Ignoring unsupported sort field %r", sort_by)
            sort_by = DEFAULT_SORT_FIELD
        descending = (params.get("descending") or "").strip().lower() in _TRUTHY
        return PageRequest(
            sort_by=sort_by,
            descending=descending,
            page=_parse_page(params.get("page")),
            per_page=per_page,
        )


@dataclass(frozen=True)
class PageResult:
    """Pagination envelope around one page of serialized records."""

    data: List[Dict[str, Any]]
    total: int
    per_page: int
    current_page: int
    last_page: int
    path: str
    first_page_url: str
    last_page_url: str
    prev_page_url: Optional[str]
    next_page_url: Optional[str]
    from_: Optional[int]
    to: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_page": self.current_page,
            "data": self.data,
            "first_page_url": self.first_page_url,
            "from": self.from_,
            "last_page": self.last_page,
            "last_page_url": self.last_page_url,
            "next_page_url": self.next_page_url,
            "path": self.path,
            "per_page": self.per_page,
            "prev_page_url": self.prev_page_url,
            "to": self.to,
            "total": self.total,
        }


def last_page_number(total: int, per_page: int) -> int:
    return max(1, math.ceil(total / per_page))


def page_url(base_path: str, query_params: Sequence[Tuple[str, str]], page: int) -> str:
    """Return ``base_path`` with ``page`` replaced and other parameters kept in order."""
    params = [(key, value) for key, value in query_params if key != "page"]
    params.append(("page", str(page)))
    return f"{base_path}?{urlencode(params)}"


def prev_page_url(
    current_page: int,
    base_path: str,
    query_params: Sequence[Tuple[str, str]],
) -> Optional[str]:
    if current_page <= 1:
        return None
    return page_url(base_path, query_params, current_page - 1)


def next_page_url(
    current_page: int,
    total: int,
    per_page: int,
    base_path: str,
    query_params: Sequence[Tuple[str, str]],
) -> Optional[str]:
    if current_page >= last_page_number(total, per_page):
        return None
    return page_url(base_path, query_params, current_page + 1)


def build_page_result(
    data: List[Dict[str, Any]],
    *,
    total: int,
    page_request: PageRequest,
    base_path: str,
    query_params: Sequence[Tuple[str, str]],
) -> PageResult:
    current_page = page_request.page
    per_page = page_request.per_page
    last_page = last_page_number(total, per_page)

    if data:
        from_: Optional[int] = page_request.offset + 1
        to: Optional[int] = page_request.offset + len(data)
    else:
        from_ = to = None

    return PageResult(
        data=data,
        total=total,
        per_page=per_page,
        current_page=current_page,
        last_page=last_page,
        path=base_path,
        first_page_url=page_url(base_path, query_params, 1),
        last_page_url=page_url(base_path, query_params, last_page),
        prev_page_url=prev_page_url(current_page, base_path, query_params),
        next_page_url=next_page_url(current_page, total, per_page, base_path, query_params),
        from_=from_,
        to=to,
    )


def fetch_user_page(database: Database, page_request: PageRequest) -> Tuple[List[User], int]:
    """Return the users on the requested page together with the full count."""
    total = database.count_users()
    if page_request.offset > SQLITE_MAX_INTEGER:
        return [], total
    users = database.list_users(
        sort_by=page_request.sort_by,
        descending=page_request.descending,
        limit=page_request.per_page,
        offset=page_request.offset,
    )
    return users, total


__all__ = [
    "DEFAULT_SORT_FIELD",
    "PageRequest",
    "PageResult",
    "build_page_result",
    "fetch_user_page",
    "last_page_number",
    "next_page_url",
    "page_url",
    "prev_page_url",
]
