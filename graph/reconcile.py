import re
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from graph.classify import normalize_identifier
from graph.state import FlowStep, Session


@dataclass
class ReconcileOutcome:
    """Either a linked record id, or pending (name requested)."""
    record_id: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self.record_id is None


def phone_digits(contact_key: str) -> str:
    return re.sub(r"\D", "", contact_key)


class Reconciler:
    """Matches a declared RUT to a CRM record, creating one after a name is collected."""

    def __init__(self, records):
        self.records = records

    async def reconcile(self, session: Session, declared_identifier: str) -> ReconcileOutcome:
        """
        Look up the declared identifier and link the session on a match.

        On a miss the session enters RECONCILE_PENDING holding the raw
        identifier; nothing is written to the record store. Record store
        failures propagate as IntegrationError before the session is touched.
        """
        normalized = normalize_identifier(declared_identifier)
        record = await self.records.find_by_identifier(normalized)

        if record:
            session.link_record(record.id)
            logger.info(f"{session.contact_key} linked to existing record {record.id}")
            return ReconcileOutcome(record_id=record.id)

        session.await_name(declared_identifier)
        logger.info(f"No record for {normalized}, asking {session.contact_key} for a name")
        return ReconcileOutcome()

    async def complete(self, session: Session, name: str) -> str:
        """
        Create the record for a pending session and resume the main flow.

        The lookup is repeated first, so a retry after a failure further
        down the turn finds the record the earlier attempt created.
        """
        if session.state != FlowStep.RECONCILE_PENDING or not session.pending_identifier:
            raise ValueError(f"Session {session.contact_key} is not awaiting a name")

        raw_identifier = session.pending_identifier
        record = await self.records.find_by_identifier(normalize_identifier(raw_identifier))
        if record:
            record_id = record.id
            logger.info(f"Record {record_id} already exists for {raw_identifier}, reusing it")
        else:
            record_id = await self.records.create(
                name=name,
                identifier=raw_identifier,
                phone=phone_digits(session.contact_key),
            )

        session.link_record(record_id)
        session.record_answer("name", name)
        session.pending_identifier = None
        session.advance(FlowStep.ASK_FIRST_HOME)
        return record_id
