import re
from typing import Any, Dict, Mapping, Optional

from loguru import logger

from graph.state import ChatEvent, CrmEvent


def normalize_contact_key(address: Optional[str]) -> str:
    """``whatsapp:+56 9 1234 5678`` / ``56912345678`` -> ``whatsapp:+56912345678``."""
    digits = re.sub(r"\D", "", address or "")
    return f"whatsapp:+{digits}" if digits else ""


def capture_chat_event(form: Mapping[str, Any]) -> Optional[ChatEvent]:
    """Normalize a Twilio WhatsApp webhook form into a ChatEvent."""
    contact_key = normalize_contact_key(form.get("From"))
    if not contact_key:
        logger.warning("Twilio webhook without a sender address ignored")
        return None

    try:
        num_media = int(form.get("NumMedia") or 0)
    except (TypeError, ValueError):
        num_media = 0

    urls, types = [], []
    for i in range(num_media):
        url = form.get(f"MediaUrl{i}")
        if url:
            urls.append(url)
            types.append(form.get(f"MediaContentType{i}") or "")

    event = ChatEvent(
        contact_key=contact_key,
        text=(form.get("Body") or "").strip(),
        attachment_urls=urls,
        attachment_types=types,
        message_id=form.get("MessageSid"),
    )
    logger.info(f"Captured message from {contact_key}: {len(event.text)} chars, {event.attachment_count} attachments")
    return event


def capture_crm_event(payload: Dict[str, Any]) -> Optional[CrmEvent]:
    """Normalize a monday.com webhook body into a CrmEvent."""
    event = payload.get("event") or {}
    record_id = event.get("pulseId") or event.get("itemId") or payload.get("recordId")
    if not record_id:
        logger.warning("monday.com webhook without an item id ignored")
        return None
    return CrmEvent(record_id=str(record_id), event_id=event.get("triggerUuid"))
