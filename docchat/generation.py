"""OpenAI chat completions as the generation service."""

from openai import AsyncOpenAI, OpenAIError

from .config import config
from .errors import GenerationError

logger = config.get_logger(__name__)


class OpenAIGenerationService:
    """Single-prompt, single-answer text generation."""

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        """Initialize the generation service.

        Args:
            api_key: OpenAI API key. If None, reads from OPENAI_API_KEY.
            model: Chat model name. If None, uses config.CHAT_MODEL.
        """
        default_headers = config.get_api_headers()
        self.client = AsyncOpenAI(
            api_key=api_key or config.get_openai_api_key(),
            base_url=config.OPENAI_BASE_URL,
            default_headers=default_headers or None,
        )
        self.model = model or config.CHAT_MODEL

    async def generate(self, prompt: str, temperature: float, max_tokens: int) -> str:
        """Generate a response for ``prompt``.

        Returns:
            The stripped response text.

        Raises:
            GenerationError: If the request fails or the response is empty.
        """
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except OpenAIError as exc:
            logger.exception("Chat completion request failed")
            msg = f"Generation request failed: {exc}"
            raise GenerationError(msg) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            msg = "Generation service returned an empty response"
            raise GenerationError(msg)
        return content.strip()
