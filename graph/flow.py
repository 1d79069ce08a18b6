import copy
from typing import Any, Dict, Optional

from langgraph.graph import StateGraph, START, END
from loguru import logger

from graph.state import ChatEvent, CrmEvent, FlowStep, TurnState
from graph.sessions import SessionStore
from graph.reconcile import Reconciler
from graph.relay import MediaRelay
from graph.capture import normalize_contact_key
from graph.nodes.welcome import welcome, send_welcome
from graph.nodes.identify import ask_identifier, collect_name
from graph.nodes.questions import ask_first_home, ask_home_type, ask_price, ask_worker_type
from graph.nodes.documents import collect_docs, finish
from tools.errors import IntegrationError
from tools.llm import llm_client
from tools.monday import monday_client
from tools.whatsapp import whatsapp_gateway

# Node that consumes an inbound message for each step
NODE_FOR_STEP = {
    FlowStep.INIT: "welcome",
    FlowStep.ASK_IDENTIFIER: "ask_identifier",
    FlowStep.RECONCILE_PENDING: "collect_name",
    FlowStep.ASK_FIRST_HOME: "ask_first_home",
    FlowStep.ASK_HOME_TYPE: "ask_home_type",
    FlowStep.ASK_PRICE: "ask_price",
    FlowStep.ASK_WORKER_TYPE: "ask_worker_type",
    FlowStep.COLLECT_DOCS: "collect_docs",
    FlowStep.DONE: "finish",
}


def dispatch(state: TurnState) -> str:
    """Route the turn to the node for the session's current step."""
    return NODE_FOR_STEP[state["session"].state]


def after_documents(state: TurnState) -> str:
    return "finish" if state["session"].state == FlowStep.DONE else END


def build_workflow():
    """Build the intake workflow: one pass handles one inbound message."""
    workflow = StateGraph(TurnState)

    workflow.add_node("welcome", welcome)
    workflow.add_node("ask_identifier", ask_identifier)
    workflow.add_node("collect_name", collect_name)
    workflow.add_node("ask_first_home", ask_first_home)
    workflow.add_node("ask_home_type", ask_home_type)
    workflow.add_node("ask_price", ask_price)
    workflow.add_node("ask_worker_type", ask_worker_type)
    workflow.add_node("collect_docs", collect_docs)
    workflow.add_node("finish", finish)

    nodes = sorted(set(NODE_FOR_STEP.values()))
    workflow.add_conditional_edges(START, dispatch, {name: name for name in nodes})

    for name in nodes:
        if name not in ("collect_docs", "finish"):
            workflow.add_edge(name, END)

    workflow.add_conditional_edges("collect_docs", after_documents, {"finish": "finish", END: END})
    workflow.add_edge("finish", END)

    return workflow.compile()


class FlowController:
    """
    Applies inbound events to contact sessions.

    A turn runs the graph on a copy of the session while holding the
    contact's lock. The copy replaces the stored session only when the turn
    completes; an IntegrationError leaves the stored session as it was, so
    the contact's next message retries the same step.
    """

    def __init__(self, store: Optional[SessionStore] = None, gateway=None, records=None, llm=None):
        self.store = store if store is not None else SessionStore()
        self.gateway = gateway or whatsapp_gateway
        self.records = records or monday_client
        self.llm = llm or llm_client
        self.reconciler = Reconciler(self.records)
        self.relay = MediaRelay(self.gateway, self.records)
        self.graph = build_workflow()

    def _deps(self) -> Dict[str, Any]:
        return {
            "gateway": self.gateway,
            "reconciler": self.reconciler,
            "relay": self.relay,
            "llm": self.llm,
        }

    async def handle_chat_event(self, event: ChatEvent) -> Optional[TurnState]:
        """
        Process one inbound WhatsApp message.

        Returns:
            The final turn state, or None when the turn was abandoned
        """
        key = event.contact_key
        with logger.contextualize(contact=key):
            async with self.store.lock(key):
                session = self.store.get(key)
                if session is None:
                    session = self.store.create(key)

                draft = copy.deepcopy(session)
                draft.remember("user", event.text)
                initial_state: TurnState = {"session": draft, "event": event, "sent": [], "errors": []}

                try:
                    result = await self.graph.ainvoke(initial_state, config={"configurable": self._deps()})
                except IntegrationError as e:
                    logger.warning(f"Turn abandoned at {session.state.value} for {key}: {e}")
                    return None
                except Exception as e:
                    logger.exception(f"Unexpected error at {session.state.value} for {key}: {e}")
                    return None

                draft = result["session"]
                if draft.state == FlowStep.DONE:
                    self.store.delete(key)
                else:
                    self.store.save(draft)

                logger.info(f"{key}: {session.state.value} -> {draft.state.value}")
                return result

    async def handle_crm_event(self, event: CrmEvent) -> bool:
        """
        Send the welcome to the contact of a CRM item.

        The state stays at INIT; the contact's reply starts the flow. A contact
        without a session gets one holding the record's name, so that reply is
        greeted by name.
        """
        try:
            record = await self.records.get_record(event.record_id)
        except IntegrationError as e:
            logger.warning(f"Could not load record {event.record_id}: {e}")
            return False

        if not record or not record.phone:
            logger.warning(f"Record {event.record_id} has no phone, conversation not started")
            return False

        address = normalize_contact_key(record.phone)
        try:
            await send_welcome(self.gateway, address, record.name)
        except IntegrationError as e:
            logger.warning(f"Welcome to {address} failed: {e}")
            return False

        if record.name:
            async with self.store.lock(address):
                if self.store.get(address) is None:
                    self.store.create(address).record_answer("name", record.name)

        logger.info(f"Welcome sent to {address} for record {event.record_id}")
        return True

    async def reset(self, contact_key: str) -> bool:
        """Drop a contact's session (admin reset)."""
        async with self.store.lock(contact_key):
            return self.store.delete(contact_key)
