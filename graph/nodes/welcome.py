from langchain_core.runnables import RunnableConfig
from graph.state import FlowStep, TurnState
from graph.messages import WELCOME, ASK_IDENTIFIER, DEFAULT_NAME, say
from loguru import logger


async def send_welcome(gateway, address: str, name: str = "") -> str:
    """Send the opening message, as the approved template when one is configured."""
    display_name = name or DEFAULT_NAME
    if gateway.template_sid:
        return await gateway.send_template(address, gateway.template_sid, {"1": display_name})
    return await gateway.send_text(address, WELCOME.format(name=display_name))


async def welcome(state: TurnState, config: RunnableConfig) -> TurnState:
    """Open the conversation and ask for the identifier."""
    session = state["session"]
    gateway = config["configurable"]["gateway"]
    logger.info(f"Starting intake for {session.contact_key}")

    name = session.answers.get("name", "")
    await send_welcome(gateway, session.contact_key, name)
    body = WELCOME.format(name=name or DEFAULT_NAME)
    state.setdefault("sent", []).append(body)
    session.remember("assistant", body)
    await say(state, gateway, ASK_IDENTIFIER)

    session.advance(FlowStep.ASK_IDENTIFIER)
    return state
