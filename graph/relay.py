import mimetypes
import tempfile
from datetime import datetime, timezone
from typing import Optional

from loguru import logger

from graph.reconcile import phone_digits
from tools.errors import IntegrationError, ResourceError

# Attachments larger than this spill from memory to a temporary file
SPOOL_MAX_BYTES = 5 * 1024 * 1024


class MediaRelay:
    """Moves WhatsApp attachments into the linked record's file column."""

    def __init__(self, gateway, records):
        self.gateway = gateway
        self.records = records

    async def relay(
        self,
        contact_key: str,
        attachment_url: str,
        record_id: Optional[str],
        content_type: Optional[str] = None,
        index: int = 0,
    ) -> bool:
        """
        Download one attachment and upload it to the record.

        Args:
            contact_key: Sender address, used for logging and the filename
            attachment_url: Twilio media URL
            record_id: Linked CRM record; relay is refused without one
            content_type: MIME type reported by Twilio, used for the extension
            index: Position of the attachment within its message

        Returns:
            True when the file reached the record store
        """
        if not record_id:
            logger.error(f"Refusing to relay attachment for {contact_key}: no linked record")
            return False

        filename = build_filename(contact_key, index, content_type)
        try:
            with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_BYTES) as buffer:
                size = await self.gateway.download_media(attachment_url, buffer)
                if not size:
                    raise ResourceError("twilio", "attachment is empty")
                buffer.seek(0)
                await self.records.attach_file(record_id, buffer.read(), filename)
        except IntegrationError as e:
            logger.error(f"Attachment {index} from {contact_key} not relayed: {e}")
            return False

        logger.info(f"Relayed {filename} ({size} bytes) to record {record_id}")
        return True


def build_filename(contact_key: str, index: int, content_type: Optional[str]) -> str:
    extension = ""
    if content_type:
        extension = mimetypes.guess_extension(content_type.split(";")[0].strip()) or ""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"{phone_digits(contact_key)}_{index + 1}_{stamp}{extension}"
