# provider.py - Upstream generation client used by the gateway

from __future__ import annotations
from typing import Any, AsyncGenerator, Dict, Optional
import logging

from google import genai
from google.genai import types

from config import ProviderConfig

logger = logging.getLogger("ProviderLayer")

class MissingCredentialError(RuntimeError):
    """Raised when the gateway has no upstream credential to attach."""

class ProviderLayer:
    """
    Thin async wrapper around the google-genai client.

    Built once by the gateway's composition root and kept for the lifetime
    of the process. The credential never leaves this object.
    """

    def __init__(self, config: ProviderConfig, client: Optional[genai.Client] = None):
        self.config = config
        if client is None:
            if not config.api_key:
                raise MissingCredentialError("API key is not configured on the server.")
            client = genai.Client(api_key=config.api_key)
        self.client = client

    @staticmethod
    def _build_config(config: Optional[Dict[str, Any]]) -> Optional[types.GenerateContentConfig]:
        # Callers send camelCase keys (responseMimeType, thinkingConfig, ...)
        if not config:
            return None
        return types.GenerateContentConfig.model_validate(config)

    async def generate(self, model: str, contents: Any, config: Optional[Dict[str, Any]] = None) -> str:
        """Single-shot generation. Returns the response text ('' when the model sent none)."""
        response = await self.client.aio.models.generate_content(
            model=model,
            contents=contents,
            config=self._build_config(config),
        )
        text = response.text or ""
        logger.info(f"Generated {len(text)} chars with {model}")
        return text

    async def stream(
        self, model: str, contents: Any, config: Optional[Dict[str, Any]] = None
    ) -> AsyncGenerator[str, None]:
        """
        Streaming generation.

        The upstream connection is opened before the first fragment is
        requested, so a failure to connect raises from the first
        ``__anext__`` call. Empty fragments are skipped.
        """
        response_stream = await self.client.aio.models.generate_content_stream(
            model=model,
            contents=contents,
            config=self._build_config(config),
        )
        async for chunk in response_stream:
            if chunk.text:
                yield chunk.text
