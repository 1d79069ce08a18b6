from langchain_core.runnables import RunnableConfig
from graph.state import FlowStep, TurnState
from graph.catalog import required_documents
from graph.messages import (
    CLOSING, DOCUMENT_FAILED, DOCUMENT_RECEIVED, DOCUMENTS_REMINDER, notify,
)
from tools.errors import IntegrationError
from tools.llm import build_documents_prompt
from loguru import logger


async def collect_docs(state: TurnState, config: RunnableConfig) -> TurnState:
    """
    Relay every attachment in the message and track the document quota.

    Each attachment is independent: a failed one is reported and skipped,
    the rest still go through. Once the quota is met the session moves to
    DONE and any remaining attachments are left alone. Messages sent here
    are best-effort because uploads cannot be rolled back.
    """
    session, event = state["session"], state["event"]
    deps = config["configurable"]
    gateway = deps["gateway"]

    labels = required_documents(session.answers.get("worker_category", ""))
    required = len(labels)
    if not required:
        logger.error(f"{session.contact_key} is collecting documents without a worker category")
        return state

    if not event.attachment_urls:
        await _answer_text(state, deps, labels)
        return state

    relayed = 0
    for index, url in enumerate(event.attachment_urls):
        if session.received_document_count >= required:
            logger.info(f"Quota met for {session.contact_key}, {event.attachment_count - index} attachments skipped")
            break

        content_type = event.attachment_types[index] if index < len(event.attachment_types) else None
        ok = await deps["relay"].relay(
            session.contact_key, url, session.linked_record_id, content_type=content_type, index=index
        )
        if not ok:
            state.setdefault("errors", []).append(f"relay_failed:{index}")
            await notify(state, gateway, DOCUMENT_FAILED)
            continue

        relayed += 1
        received = session.count_document()
        if received < required:
            await notify(state, gateway, DOCUMENT_RECEIVED.format(received=received, required=required))

    state["relayed"] = relayed
    logger.info(f"{session.contact_key} has {session.received_document_count}/{required} documents")

    if session.received_document_count >= required:
        session.advance(FlowStep.DONE)
    return state


async def _answer_text(state: TurnState, deps, labels) -> None:
    """Reply to a text-only message without changing the step."""
    session = state["session"]
    llm = deps.get("llm")

    if llm is not None and llm.enabled:
        try:
            reply = await llm.complete(
                session.history,
                build_documents_prompt(labels, session.received_document_count),
            )
        except IntegrationError as e:
            logger.warning(f"AI fallback failed for {session.contact_key}: {e}")
            reply = None
        if reply:
            await notify(state, deps["gateway"], reply)
            return

    await notify(state, deps["gateway"], DOCUMENTS_REMINDER.format(
        received=session.received_document_count, required=len(labels)
    ))


async def finish(state: TurnState, config: RunnableConfig) -> TurnState:
    """Close the conversation; the controller drops the session afterwards."""
    session = state["session"]
    await notify(state, config["configurable"]["gateway"], CLOSING)
    logger.info(f"Intake complete for {session.contact_key}, record {session.linked_record_id}")
    return state
