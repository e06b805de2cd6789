import logging
from typing import Dict, Any

log = logging.getLogger("content_consumer")


async def handle_post_created(event_payload: Dict[str, Any]):
    """
    Consumer logic for 'post.created'. Schedules preview image generation for the post.
    """
    post_id = event_payload["id"]
    log.info(f"Generate preview image for post {post_id}")

async def handle_post_updated(event_payload: Dict[str, Any]):
    log.info(f"Post updated: {event_payload['id']}")

async def handle_post_deleted(event_payload: Dict[str, Any]):
    log.info(f"Post deleted: {event_payload['id']}")


async def handle_tag_created(event_payload: Dict[str, Any]):
    log.info(f"Tag created: {event_payload.get('name')} ({event_payload['id']})")

async def handle_tag_updated(event_payload: Dict[str, Any]):
    log.info(f"Tag updated: {event_payload.get('name')} ({event_payload['id']})")

async def handle_tag_deleted(event_payload: Dict[str, Any]):
    log.info(f"Tag deleted: {event_payload['id']}")

async def handle_tags_nightly_stats(event_payload: Dict[str, Any]):
    """
    Consumer logic for the scheduled 'tags.nightly.stats' event.
    Stats are computed per organization, so the payload must carry 'org_id'.
    """
    org_id = event_payload["org_id"]
    log.info(f"Compute nightly tag stats for org {org_id}")


async def handle_comment_created(event_payload: Dict[str, Any]):
    log.info(f"Comment created: {event_payload['id']} for post {event_payload.get('post_id')}")

async def handle_comment_updated(event_payload: Dict[str, Any]):
    log.info(f"Comment updated: {event_payload['id']}")

async def handle_comment_deleted(event_payload: Dict[str, Any]):
    log.info(f"Comment deleted: {event_payload['id']}")

async def handle_comment_restored(event_payload: Dict[str, Any]):
    log.info(f"Comment restored: {event_payload['id']}")
