"""
LLM Service for coaching message rendering
Turns a template message plus seller insights into a more natural WhatsApp text
"""
from typing import Dict, Optional

from anthropic import Anthropic

from salescoach.config import get_settings
from salescoach.utils.logger import log

settings = get_settings()


class LLMService:
    """
    Service for generating coaching messages using Claude
    """

    def __init__(self, client=None):
        self.enabled = bool(settings.enable_llm_messages and (settings.anthropic_api_key or client))
        self.client = client

        if self.enabled and self.client is None:
            try:
                self.client = Anthropic(api_key=settings.anthropic_api_key)
                log.info("LLM Service initialized with Claude")
            except Exception as e:
                log.error(f"Failed to initialize Anthropic client: {str(e)}")
                self.enabled = False
        elif not self.enabled:
            log.info("LLM messages disabled (no API key or feature disabled)")

    def generate(self, prompt: str, context: Optional[Dict] = None) -> Optional[str]:
        """
        Ask the model for a message.

        Returns None when the service is disabled, the call fails or the
        answer is empty; callers fall back to their own text.
        """
        if not self.enabled:
            return None

        try:
            full_prompt = self._build_prompt(prompt, context or {})
            response = self.client.messages.create(
                model=settings.llm_model,
                max_tokens=settings.llm_max_tokens,
                messages=[{"role": "user", "content": full_prompt}]
            )

            text = (response.content[0].text or "").strip() if response.content else ""
            if not text:
                log.warning("LLM returned an empty message")
                return None
            log.info("Generated coaching message via LLM")
            return text

        except Exception as e:
            log.error(f"Error generating message via LLM: {str(e)}")
            return None

    def _build_prompt(self, prompt: str, context: Dict) -> str:
        lines = [prompt, "", "Context:"]
        for key, value in context.items():
            if isinstance(value, (list, tuple)):
                value = "; ".join(str(v) for v in value)
            lines.append(f"- {key}: {value}")
        lines.append("")
        lines.append(
            "Reply with the message text only. Keep it under 600 characters, "
            "friendly and specific, suitable for WhatsApp."
        )
        return "\n".join(lines)
