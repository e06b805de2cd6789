import logging
from typing import Dict, Any

log = logging.getLogger("account_consumer")


async def handle_user_created(event_payload: Dict[str, Any]):
    """Consumer logic for 'user.created' (welcome notification hook)."""
    log.info(f"User created: {event_payload.get('name')} ({event_payload['id']})")

async def handle_user_updated(event_payload: Dict[str, Any]):
    log.info(f"User updated: {event_payload.get('name')} ({event_payload['id']})")

async def handle_user_deleted(event_payload: Dict[str, Any]):
    log.info(f"User deleted: {event_payload['id']}")
