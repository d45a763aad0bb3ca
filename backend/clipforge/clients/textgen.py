"""Structured text generation client (OpenAI-compatible chat completions)."""
import json
import logging
from typing import Optional

from clipforge.clients.http import ServiceClient
from clipforge.errors import ErrorCode, RetryableError

logger = logging.getLogger(__name__)


class TextGenerationClient(ServiceClient):
    """Generates JSON objects that follow a caller-supplied JSON schema."""

    service_name = "text-generation"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        timeout: float = 120.0,
    ):
        super().__init__(base_url, api_key=api_key, timeout=timeout)
        self.model = model
        self.temperature = temperature

    @classmethod
    def from_settings(cls, settings) -> "TextGenerationClient":
        return cls(
            base_url=settings.openai_base_url,
            api_key=settings.openai_api_key,
            model=settings.texts_model,
            timeout=settings.http_timeout_seconds,
        )

    async def generate_json(self, prompt: str, schema: dict, system: Optional[str] = None) -> dict:
        """
        Generate one JSON object.

        Args:
            prompt: User prompt
            schema: JSON schema the response must satisfy
            system: Optional system instruction

        Returns:
            Parsed JSON object
        """
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        logger.debug(f"Calling {self.model}: prompt length {len(prompt)}")
        payload = await self.request_json(
            "POST",
            "chat/completions",
            json={
                "model": self.model,
                "messages": messages,
                "temperature": self.temperature,
                "response_format": {
                    "type": "json_schema",
                    "json_schema": {
                        "name": "structured_output",
                        "schema": schema,
                        "strict": True,
                    },
                },
            },
        )

        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise RetryableError(
                ErrorCode.UPSTREAM_BAD_RESPONSE, "Empty response from text generation"
            ) from exc

        try:
            result = json.loads(content)
        except (TypeError, json.JSONDecodeError) as exc:
            raise RetryableError(
                ErrorCode.UPSTREAM_BAD_RESPONSE, f"Generated text is not valid JSON: {exc}"
            ) from exc

        if not isinstance(result, dict):
            raise RetryableError(ErrorCode.UPSTREAM_BAD_RESPONSE, "Generated JSON is not an object")
        return result
