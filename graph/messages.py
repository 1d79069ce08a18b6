from loguru import logger

from graph.state import FlowStep, TurnState
from tools.errors import IntegrationError

DEFAULT_NAME = "Cliente"

WELCOME = """Hola {name}! 👋
Soy MarIA, tu asistente virtual que te va a apoyar con la gestión de tu crédito hipotecario.
Lo primero que vamos a hacer es contestar unas preguntas."""

ASK_IDENTIFIER = "1️⃣ ¿Me puedes confirmar tu RUT?"
ASK_NAME = "No encontramos una ficha asociada a ese RUT. ¿Me indicas tu nombre completo para crearla?"
RECORD_CREATED = "Gracias {name}, ya registramos tus datos 🙌"
ASK_FIRST_HOME = "2️⃣ ¿Es tu primera vivienda? (Sí / No)"
ASK_HOME_TYPE = "3️⃣ ¿Es una casa o un departamento?"
ASK_PRICE = "4️⃣ ¿Cuál es el precio de compra de tu propiedad? (en UF)"
ASK_WORKER_TYPE = """5️⃣ ¿Qué tipo de trabajador eres?
1. Dependiente
2. Independiente
3. Socio Empresa"""
WORKER_REPROMPT = "No logré identificar tu respuesta 🤔 Por favor responde con 1, 2 o 3.\n" + ASK_WORKER_TYPE
DOCUMENTS_INTRO = """Ahora, vamos a necesitar que me envíes por este chat el siguiente listado de documentos:
{checklist}"""
DOCUMENT_RECEIVED = "📎 Recibimos tu documento ({received} de {required})."
DOCUMENT_FAILED = "⚠️ No pudimos procesar uno de tus archivos. Por favor envíalo nuevamente."
DOCUMENTS_REMINDER = ("Seguimos esperando tus documentos: llevamos {received} de {required}. "
                      "Puedes enviarlos como archivo o foto por este chat.")
CLOSING = ("✅ Muchas gracias, recibimos todos tus documentos y estaríamos ok para comenzar con el "
           "proceso de evaluación crediticia. Estaremos en contacto por mail. Nos vemos! 👋")

# Prompt repeated when a text step receives an empty message
PROMPTS = {
    FlowStep.ASK_IDENTIFIER: ASK_IDENTIFIER,
    FlowStep.RECONCILE_PENDING: ASK_NAME,
    FlowStep.ASK_FIRST_HOME: ASK_FIRST_HOME,
    FlowStep.ASK_HOME_TYPE: ASK_HOME_TYPE,
    FlowStep.ASK_PRICE: ASK_PRICE,
    FlowStep.ASK_WORKER_TYPE: ASK_WORKER_TYPE,
}


async def say(state: TurnState, gateway, body: str) -> None:
    """Send a message that belongs to the transition; failures abort the turn."""
    session = state["session"]
    await gateway.send_text(session.contact_key, body)
    state.setdefault("sent", []).append(body)
    session.remember("assistant", body)


async def notify(state: TurnState, gateway, body: str) -> bool:
    """Send a best-effort message; failures are logged and the turn goes on."""
    try:
        await say(state, gateway, body)
        return True
    except IntegrationError as e:
        logger.warning(f"Could not deliver message to {state['session'].contact_key}: {e}")
        state.setdefault("errors", []).append(f"notify_failed: {e}")
        return False
