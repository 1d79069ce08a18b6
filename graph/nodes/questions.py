from langchain_core.runnables import RunnableConfig
from graph.state import FlowStep, TurnState
from graph.classify import WorkerCategory, classify_first_home, classify_home_type, classify_worker_type
from graph.catalog import format_checklist
from graph.messages import (
    ASK_HOME_TYPE, ASK_PRICE, ASK_WORKER_TYPE, WORKER_REPROMPT, DOCUMENTS_INTRO, PROMPTS, say,
)
from loguru import logger


async def _reprompt_if_empty(state: TurnState, gateway) -> bool:
    if state["event"].text.strip():
        return False
    await say(state, gateway, PROMPTS[state["session"].state])
    return True


async def ask_first_home(state: TurnState, config: RunnableConfig) -> TurnState:
    session, gateway = state["session"], config["configurable"]["gateway"]
    if await _reprompt_if_empty(state, gateway):
        return state

    session.record_answer("first_home", classify_first_home(state["event"].text).value)
    session.advance(FlowStep.ASK_HOME_TYPE)
    await say(state, gateway, ASK_HOME_TYPE)
    return state


async def ask_home_type(state: TurnState, config: RunnableConfig) -> TurnState:
    session, gateway = state["session"], config["configurable"]["gateway"]
    if await _reprompt_if_empty(state, gateway):
        return state

    session.record_answer("home_type", classify_home_type(state["event"].text).value)
    session.advance(FlowStep.ASK_PRICE)
    await say(state, gateway, ASK_PRICE)
    return state


async def ask_price(state: TurnState, config: RunnableConfig) -> TurnState:
    """Store the purchase price as typed; it is not parsed."""
    session, gateway = state["session"], config["configurable"]["gateway"]
    if await _reprompt_if_empty(state, gateway):
        return state

    session.record_answer("price", state["event"].text.strip())
    session.advance(FlowStep.ASK_WORKER_TYPE)
    await say(state, gateway, ASK_WORKER_TYPE)
    return state


async def ask_worker_type(state: TurnState, config: RunnableConfig) -> TurnState:
    """Classify the worker category and send its document checklist.

    Unrecognized answers keep the contact on this step until one matches.
    """
    session, gateway = state["session"], config["configurable"]["gateway"]

    category = classify_worker_type(state["event"].text)
    if category == WorkerCategory.UNRECOGNIZED:
        logger.info(f"Unrecognized worker type from {session.contact_key}: {state['event'].text!r}")
        await say(state, gateway, WORKER_REPROMPT)
        return state

    session.record_answer("worker_category", category.value)
    session.advance(FlowStep.COLLECT_DOCS)
    await say(state, gateway, DOCUMENTS_INTRO.format(checklist=format_checklist(category.value)))
    return state
