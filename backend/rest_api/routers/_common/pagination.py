"""
Limit/offset paging for list endpoints.

Services take plain `limit` / `offset` and return `total_count`; routers
attach the page metadata:

    result = service.list_invoices(..., limit=page.limit, offset=page.offset)
    return ok({**result, "pagination": page.to_dict(total=result["total_count"])})
"""

from dataclasses import dataclass
from typing import Any

from fastapi import Query

from shared.config.constants import Limits


@dataclass(frozen=True)
class Pagination:
    limit: int
    offset: int

    def to_dict(self, total: int) -> dict[str, Any]:
        """Page metadata; `page` is 1-indexed."""
        return {
            "limit": self.limit,
            "offset": self.offset,
            "page": self.offset // self.limit + 1,
            "total": total,
            "pages": -(-total // self.limit),
            "has_next": self.offset + self.limit < total,
        }


def get_pagination(
    limit: int = Query(default=Limits.DEFAULT_PAGE_SIZE, ge=1, le=Limits.MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
) -> Pagination:
    return Pagination(limit=limit, offset=offset)
