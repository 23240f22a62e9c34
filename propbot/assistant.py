"""
Response Assembler.

Turns the filtered firm context into the final answer through one chat
completion call. No retries here: the caller gets an LLMError and decides.
"""

from typing import Optional

from openai import AsyncOpenAI

from .config import LLMConfig
from .errors import ConfigError, LLMError
from .firms import FIRMS, Firm
from .logger import get_logger


logger = get_logger(__name__)


BASE_SYSTEM_PROMPT = (
    "Eres un experto en prop trading y firmas de fondeo. Responde SIEMPRE en español "
    "con información precisa y útil.\n\n"
    "FORMATO REQUERIDO:\n"
    "- USA HTML para dar formato (negrita: <b></b>, cursiva: <i></i>)\n"
    "- Sé específico con precios, porcentajes y datos numéricos\n"
    "- Si mencionas precios, usa formato: $1,500 (con comas)\n"
    "- Incluye emojis relevantes para mejorar la legibilidad\n"
    "- Responde de forma estructurada y clara\n\n"
)


def build_system_prompt(firm: Optional[Firm] = None) -> str:
    """System prompt, focused on one firm when given."""
    names = ", ".join(f.name for f in FIRMS.values())
    prompt = BASE_SYSTEM_PROMPT + f"FIRMAS DISPONIBLES: {names}\n\n"

    if firm is not None:
        return prompt + (
            f"FIRMA ESPECÍFICA: {firm.name}\n"
            "Enfócate en información específica de esta firma."
        )

    return prompt + "Proporciona información comparativa cuando sea relevante."


def build_user_prompt(question: str, context_text: str) -> str:
    return f"Pregunta: {question}\n\nDatos disponibles:\n{context_text}"


class ResponseAssembler:
    """
    Thin wrapper over an OpenAI-compatible chat completion endpoint.
    """

    def __init__(self, config: Optional[LLMConfig] = None, client: Optional[AsyncOpenAI] = None):
        """
        Args:
            config: model and request settings
            client: pre-built client (tests pass a fake here)
        """
        self.config = config or LLMConfig()

        if client is None:
            if not self.config.is_configured:
                raise ConfigError("OPENAI_API_KEY is not set")
            client = AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.api_base,
                timeout=self.config.timeout_seconds,
                max_retries=0,
            )

        self.llm = client

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """
        Run one completion.

        Raises:
            LLMError: the call failed or returned no text
        """
        try:
            response = await self.llm.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except Exception as e:
            logger.error(f"LLM call failed: {e}")
            raise LLMError(f"LLM call failed: {e}") from e

        content = None
        if response.choices:
            content = response.choices[0].message.content

        if not content or not content.strip():
            raise LLMError("LLM returned an empty completion")

        return content.strip()
