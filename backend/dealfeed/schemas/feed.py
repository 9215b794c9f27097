"""Feed envelope schemas."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from dealfeed.schemas.deal import DealResponse
from dealfeed.services.deal_service import FeedResult


class FeedMeta(BaseModel):
    """Distinct filter values present in the whole filtered result."""

    warehouses: List[str] = []
    stores: List[str] = []


class FeedResponse(BaseModel):
    """Paginated deal feed.

    ``count`` is the number of matching deals across all pages;
    ``nextCursor`` is null on the last page.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    count: int
    items: List[DealResponse]
    next_cursor: Optional[str] = None
    updated_at: str
    meta: FeedMeta

    @classmethod
    def from_result(cls, result: FeedResult) -> "FeedResponse":
        return cls(
            count=result.page.total,
            items=[DealResponse.from_deal(d) for d in result.page.items],
            next_cursor=result.page.next_cursor,
            updated_at=result.updated_at,
            meta=FeedMeta(**result.meta),
        )
