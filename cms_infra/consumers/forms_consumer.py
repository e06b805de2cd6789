import logging
from typing import Dict, Any

log = logging.getLogger("forms_consumer")


async def handle_form_created(event_payload: Dict[str, Any]):
    log.info(f"Form created: {event_payload['id']}")

async def handle_form_updated(event_payload: Dict[str, Any]):
    log.info(f"Form updated: {event_payload['id']}")

async def handle_form_deleted(event_payload: Dict[str, Any]):
    log.info(f"Form deleted: {event_payload['id']}")

async def handle_form_submitted(event_payload: Dict[str, Any]):
    """
    Consumer logic for 'form.submitted'. Kicks off post-processing of the submission
    (notifications, exports) identified by 'submission_id'.
    """
    log.info(f"Process submission {event_payload['submission_id']}")


async def handle_field_created(event_payload: Dict[str, Any]):
    log.info(f"Field created: {event_payload['id']} for org {event_payload.get('org_id')}")

async def handle_field_updated(event_payload: Dict[str, Any]):
    log.info(f"Field updated: {event_payload['id']} for org {event_payload.get('org_id')}")

async def handle_field_deleted(event_payload: Dict[str, Any]):
    log.info(f"Field deleted: {event_payload['id']} for org {event_payload.get('org_id')}")


async def handle_submission_created(event_payload: Dict[str, Any]):
    log.info(f"Submission created: {event_payload['id']} for form {event_payload.get('form_id')}")
