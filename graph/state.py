from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TypedDict, Optional, List, Dict, Any

HISTORY_LIMIT = 20


class FlowStep(str, Enum):
    """Position of a contact in the intake script."""
    INIT = "init"
    ASK_IDENTIFIER = "ask_identifier"
    RECONCILE_PENDING = "reconcile_pending"   # waiting for a name to create the record
    ASK_FIRST_HOME = "ask_first_home"
    ASK_HOME_TYPE = "ask_home_type"
    ASK_PRICE = "ask_price"
    ASK_WORKER_TYPE = "ask_worker_type"
    COLLECT_DOCS = "collect_docs"
    DONE = "done"


VALID_TRANSITIONS = {
    FlowStep.INIT: [FlowStep.ASK_IDENTIFIER],
    FlowStep.ASK_IDENTIFIER: [FlowStep.ASK_FIRST_HOME, FlowStep.RECONCILE_PENDING],
    FlowStep.RECONCILE_PENDING: [FlowStep.ASK_FIRST_HOME],
    FlowStep.ASK_FIRST_HOME: [FlowStep.ASK_HOME_TYPE],
    FlowStep.ASK_HOME_TYPE: [FlowStep.ASK_PRICE],
    FlowStep.ASK_PRICE: [FlowStep.ASK_WORKER_TYPE],
    FlowStep.ASK_WORKER_TYPE: [FlowStep.COLLECT_DOCS],
    FlowStep.COLLECT_DOCS: [FlowStep.DONE],
    FlowStep.DONE: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: FlowStep, to_state: FlowStep):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    """Conversation state for one contact. Lives only in memory."""
    contact_key: str
    state: FlowStep = FlowStep.INIT
    answers: Dict[str, str] = field(default_factory=dict)
    linked_record_id: Optional[str] = None
    pending_identifier: Optional[str] = None
    received_document_count: int = 0
    history: List[Dict[str, str]] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def advance(self, to_state: FlowStep) -> FlowStep:
        """Move forward along the script. Raises InvalidTransitionError otherwise."""
        if to_state not in VALID_TRANSITIONS.get(self.state, []):
            raise InvalidTransitionError(self.state, to_state)
        self.state = to_state
        return to_state

    def record_answer(self, name: str, value: str) -> None:
        # Answers are append-only; the first value wins
        self.answers.setdefault(name, value)

    def link_record(self, record_id: str) -> None:
        if self.linked_record_id and self.linked_record_id != record_id:
            raise ValueError(
                f"Session {self.contact_key} already linked to {self.linked_record_id}"
            )
        self.linked_record_id = record_id

    def await_name(self, raw_identifier: str) -> None:
        """Enter the reconciliation side-branch holding the declared identifier."""
        self.advance(FlowStep.RECONCILE_PENDING)
        self.pending_identifier = raw_identifier

    def count_document(self) -> int:
        self.received_document_count += 1
        return self.received_document_count

    def remember(self, role: str, content: str) -> None:
        if not content:
            return
        self.history.append({"role": role, "content": content})
        del self.history[:-HISTORY_LIMIT]

    def touch(self) -> None:
        self.updated_at = _now()

    def snapshot(self) -> Dict[str, Any]:
        """JSON-friendly view for the admin endpoint."""
        return {
            "contact_key": self.contact_key,
            "state": self.state.value,
            "answers": dict(self.answers),
            "linked_record_id": self.linked_record_id,
            "pending_identifier": self.pending_identifier,
            "received_document_count": self.received_document_count,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class ChatEvent:
    """Inbound WhatsApp message, normalized from the Twilio form payload."""
    contact_key: str
    text: str = ""
    attachment_urls: List[str] = field(default_factory=list)
    attachment_types: List[str] = field(default_factory=list)
    message_id: Optional[str] = None

    @property
    def attachment_count(self) -> int:
        return len(self.attachment_urls)


@dataclass
class CrmEvent:
    """monday.com item notification."""
    record_id: str
    event_id: Optional[str] = None


class TurnState(TypedDict, total=False):
    """State shape for one pass of the intake graph."""
    session: Session                 # working copy, committed by the controller
    event: ChatEvent
    sent: List[str]                  # bodies delivered to the contact this turn
    errors: List[str]
    relayed: int                     # attachments relayed this turn
