import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from tortoise.transactions import in_transaction

from cms_infra.api.quota import RateLimit
from cms_infra.events import event_store
from cms_infra.events.topics import Topic
from cms_infra.schemas.events import OutboxEventResponse, OutboxStatusResponse, PublishedEventResponse
from cms_infra.schemas.rate_limit import ScopeLimit
from cms_infra.schemas.response import SuccessResponse

router = APIRouter()
log = logging.getLogger(__name__)

tag_stats_quota = RateLimit(
    per_user=ScopeLimit(limit=10, window_sec=60),
    per_org=ScopeLimit(limit=100, window_sec=60),
)


@router.post(
    "/jobs/tag-stats/run",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=SuccessResponse,
    dependencies=[Depends(tag_stats_quota)],
)
async def run_tag_stats_endpoint(x_org_id: str = Header(..., alias="X-Org-Id")):
    """
    Queues the nightly tag statistics job for an organization on demand.
    Returns 202 Accepted because the dispatcher picks the event up asynchronously.
    """
    try:
        async with in_transaction() as conn:
            event = await event_store.publish(Topic.TAGS_NIGHTLY_STATS.value, {"org_id": x_org_id}, conn=conn)
    except Exception as e:
        log.error(f"Error queueing tag stats for org {x_org_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to queue the job.")

    log.info(f"Tag stats queued for org {x_org_id} (event {event['id']}).")
    data = PublishedEventResponse(
        event_id=event["id"],
        topic=event["topic"],
        message="Job accepted and queued.",
    ).model_dump(mode="json")
    return SuccessResponse(data=data)


@router.get("/outbox", response_model=SuccessResponse)
async def outbox_status_endpoint(request: Request):
    """Row counts per status and whether this process's dispatcher is polling."""
    try:
        counts = await event_store.count_by_status()
    except Exception as e:
        log.error(f"Error reading outbox status: {e}")
        raise HTTPException(status_code=500, detail="Server failed to read outbox status.")

    dispatcher = getattr(request.app.state, "dispatcher", None)
    data = OutboxStatusResponse(
        dispatcher_running=bool(dispatcher and dispatcher.is_running),
        counts=counts,
    ).model_dump()
    return SuccessResponse(data=data)


@router.get("/outbox/{event_id}", response_model=SuccessResponse)
async def get_outbox_event_endpoint(event_id: UUID):
    """Fetches a single outbox event, e.g. to check whether it was delivered."""
    try:
        event = await event_store.load(event_id)
    except Exception as e:
        log.error(f"Error fetching outbox event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch the event.")

    if not event:
        raise HTTPException(status_code=404, detail="Event not found")

    data = OutboxEventResponse(
        id=event.id,
        topic=event.topic,
        status=event.status.value,
        attempts=event.attempts,
        payload=event.payload,
        created_at=str(event.created_at),
        updated_at=str(event.updated_at),
    ).model_dump(mode="json")
    return SuccessResponse(data=data)
