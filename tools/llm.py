import os
from typing import Dict, List, Optional

from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from tools.errors import IntegrationError


class LLMClient:
    """OpenAI chat client used as a fallback responder during document collection."""

    def __init__(self):
        self.api_key = os.getenv("OPENAI_API_KEY")
        self.model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        self.timeout = float(os.getenv("HTTP_TIMEOUT_SECONDS", "20"))
        self._client = None

        if not self.api_key:
            logger.warning("No OpenAI API key provided, AI fallback disabled")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _get_client(self):
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    async def complete(self, history: List[Dict[str, str]], system_prompt: str) -> Optional[str]:
        """
        Produce a contextual reply for the conversation so far.

        Args:
            history: Chat turns as ``{"role", "content"}`` dicts, oldest first
            system_prompt: Instructions describing where the contact is in the flow

        Returns:
            Reply text, or None when the fallback is disabled
        """
        if not self.enabled:
            logger.info("AI fallback disabled, no reply generated")
            return None

        try:
            response = await self._get_client().chat.completions.create(
                model=self.model,
                messages=[{"role": "system", "content": system_prompt}, *history],
                temperature=0.3,
                max_tokens=300,
            )
        except OpenAIError as e:
            raise IntegrationError("openai", f"completion failed: {e}") from e

        content = (response.choices[0].message.content or "").strip()
        logger.info(f"AI fallback reply generated ({len(content)} chars)")
        return content or None


def build_documents_prompt(labels: List[str], received: int) -> str:
    """System prompt for questions asked while documents are being collected."""
    checklist = "\n".join(f"- {label}" for label in labels)
    return f"""Eres MarIA, asistente virtual que acompaña a clientes en la gestión de su crédito hipotecario.

El cliente ya respondió el cuestionario y ahora debe enviar estos documentos por WhatsApp:
{checklist}

Documentos recibidos hasta ahora: {received} de {len(labels)}.

Responde en español, en 2 o 3 frases, de forma cordial. Si la pregunta no tiene que ver
con el proceso, recuérdale amablemente que seguimos esperando sus documentos.
No inventes tasas, plazos ni condiciones del crédito."""


# Global LLM client instance
llm_client = LLMClient()
