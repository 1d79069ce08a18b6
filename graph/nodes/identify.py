from langchain_core.runnables import RunnableConfig
from graph.state import FlowStep, TurnState
from graph.messages import ASK_NAME, ASK_FIRST_HOME, RECORD_CREATED, PROMPTS, say
from loguru import logger


async def ask_identifier(state: TurnState, config: RunnableConfig) -> TurnState:
    """Take the declared RUT and reconcile it against the record store."""
    session, event = state["session"], state["event"]
    deps = config["configurable"]

    declared = event.text.strip()
    if not declared:
        await say(state, deps["gateway"], PROMPTS[session.state])
        return state

    outcome = await deps["reconciler"].reconcile(session, declared)
    session.record_answer("identifier", declared)

    if outcome.pending:
        await say(state, deps["gateway"], ASK_NAME)
    else:
        session.advance(FlowStep.ASK_FIRST_HOME)
        await say(state, deps["gateway"], ASK_FIRST_HOME)

    logger.info(f"Identifier step done for {session.contact_key}: {session.state.value}")
    return state


async def collect_name(state: TurnState, config: RunnableConfig) -> TurnState:
    """Interpret the message as the contact's name and create their record."""
    session, event = state["session"], state["event"]
    deps = config["configurable"]

    name = event.text.strip()
    if not name:
        await say(state, deps["gateway"], PROMPTS[session.state])
        return state

    record_id = await deps["reconciler"].complete(session, name)
    logger.info(f"Record {record_id} created for {session.contact_key}")

    await say(state, deps["gateway"], RECORD_CREATED.format(name=name))
    await say(state, deps["gateway"], ASK_FIRST_HOME)
    return state
