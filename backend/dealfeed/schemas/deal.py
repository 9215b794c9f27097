"""Deal Pydantic schemas for the feed wire format."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from dealfeed.sources.base import Deal


class DealResponse(BaseModel):
    """One deal as served to the browser (camelCase keys)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    source: str
    store: str
    title: str
    url: str
    short_url: Optional[str] = None
    image: Optional[str] = None
    price: Optional[float] = None
    original_price: Optional[float] = None
    currency: str = "USD"
    coupon_code: Optional[str] = None
    warehouse: Optional[str] = None
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    updated_at: Optional[str] = None
    tags: List[str] = []
    residual: Optional[int] = None

    @classmethod
    def from_deal(cls, deal: Deal) -> "DealResponse":
        return cls(
            id=deal.id,
            source=deal.source.value,
            store=deal.resolved_store,
            title=deal.title,
            url=deal.url,
            short_url=deal.short_url,
            image=deal.image,
            price=float(deal.price) if deal.price is not None else None,
            original_price=float(deal.original_price) if deal.original_price is not None else None,
            currency=deal.currency,
            coupon_code=deal.coupon_code,
            warehouse=deal.warehouse,
            starts_at=deal.starts_at,
            ends_at=deal.ends_at,
            updated_at=deal.updated_at,
            tags=list(deal.tags),
            residual=deal.residual,
        )
