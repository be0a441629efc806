"""
Tags Router

Tag suggestions for ticket text, boosted by the tenant's own tag usage.
"""
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conductor.api.dependencies import get_tenant_db, require_tenant
from conductor.cache.redis_cache import cache_tag_frequencies, get_cached_tag_frequencies
from conductor.models.tenant import Tenant
from conductor.models.ticket import Ticket
from conductor.services.metrics_service import metrics_service
from conductor.services.tags_intelligence import TagsIntelligenceService, tag_frequencies_from_tickets

router = APIRouter(prefix="/api/tags", tags=["tags"])

tags_service = TagsIntelligenceService()


class TagSuggestRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=20_000)
    existing_tags: List[str] = Field(default_factory=list)
    limit: int = Field(5, ge=1, le=20)


async def load_tag_frequencies(db: AsyncSession, tenant_id):
    frequencies = await get_cached_tag_frequencies(tenant_id)
    if frequencies is None:
        result = await db.execute(select(Ticket.tags))
        frequencies = tag_frequencies_from_tickets(result.scalars().all())
        await cache_tag_frequencies(frequencies, tenant_id)
    return frequencies


@router.post("/suggest")
async def suggest_tags(
    payload: TagSuggestRequest,
    tenant: Tenant = Depends(require_tenant),
    db: AsyncSession = Depends(get_tenant_db),
):
    frequencies = await load_tag_frequencies(db, tenant.id)
    suggestions = tags_service.suggest_tags(
        payload.text,
        existing_tags=payload.existing_tags,
        tag_frequencies=frequencies,
        limit=payload.limit,
    )
    metrics_service.increment(tenant.id, "tag_suggestions")
    return {"suggestions": [s.to_dict() for s in suggestions]}
