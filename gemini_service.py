# gemini_service.py - Calls the gateway for definitions, art, related topics and facts

from __future__ import annotations
import json
import logging
from typing import Annotated, Any, AsyncIterator, Dict, List, Optional

import httpx
from pydantic import AfterValidator, BaseModel, TypeAdapter, ValidationError, field_validator
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from config import ART_PALETTE, COMPLEXITY_LEVELS, WeaveState

logger = logging.getLogger("GeminiService")

UNKNOWN_SERVER_ERROR = "An unknown server error occurred."
NO_EVENT = "NO_EVENT"

CONNECT_FAILURE_MESSAGE = (
    "Could not connect to the AI service. The service may be temporarily unavailable."
)
CONFIG_FAILURE_MESSAGE = (
    "The application is not configured correctly. For administrators: please verify "
    "that the `API_KEY` environment variable is set correctly in your deployment "
    "settings and that the key is enabled for the Generative Language API."
)
_CONFIG_ERROR_MARKERS = ("api key", "permission denied", "authentication")

# — ERRORS —

class ServiceError(Exception):
    """Base class for every failure surfaced by GeminiService."""

class GatewayError(ServiceError):
    """The gateway was unreachable or answered with an error body."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code

class ContentShapeError(ServiceError, ValueError):
    """A structured payload did not have the expected shape."""

class StreamError(ServiceError):
    """The definition stream could not be opened or broke part way."""

    def __init__(self, message: str, topic: str):
        super().__init__(message)
        self.topic = topic

# — PAYLOADS —

class AsciiArtData(BaseModel):
    art: str

    @field_validator("art")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("empty art")
        return value

class AnimatedAsciiArtData(BaseModel):
    frames: List[str]

    @field_validator("frames")
    @classmethod
    def _has_frames(cls, value: List[str]) -> List[str]:
        if not value or not all(frame.strip() for frame in value):
            raise ValueError("missing or blank frames")
        return value

class ProbeResult(BaseModel):
    is_valid: bool
    error: Optional[str] = None

def _non_blank(value: str) -> str:
    if not value.strip():
        raise ValueError("blank entry")
    return value

_ART = TypeAdapter(AsciiArtData)
_ANIMATION = TypeAdapter(AnimatedAsciiArtData)
_TOPICS = TypeAdapter(List[Annotated[str, AfterValidator(_non_blank)]])

# — SERVICE —

class GeminiService:
    """
    Client side of the generation gateway.

    Every call goes through ``POST {gateway}/api/generate``; the gateway
    attaches the credential. Single-shot calls are retried on transport
    failures, streams are not.
    """

    def __init__(self, client: httpx.AsyncClient, state: WeaveState):
        self.client = client
        self.state = state

    @classmethod
    def connect(cls, state: WeaveState) -> "GeminiService":
        """Build a service with its own HTTP client pointed at the configured gateway."""
        client = httpx.AsyncClient(
            base_url=state.gateway.base_url,
            timeout=state.gateway.timeout,
        )
        return cls(client, state)

    async def aclose(self) -> None:
        await self.client.aclose()

    # — TRANSPORT —

    @staticmethod
    def _gateway_error(response: httpx.Response) -> GatewayError:
        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = None
        if isinstance(body, dict) and body.get("error"):
            return GatewayError(str(body["error"]), response.status_code, body.get("code"))
        return GatewayError(UNKNOWN_SERVER_ERROR, response.status_code)

    def _body(self, model: str, contents: Any, config: Optional[Dict[str, Any]], stream: bool = False) -> dict:
        return {"model": model, "contents": contents, "config": config or {}, "stream": stream}

    async def _post(self, body: dict) -> httpx.Response:
        retrying = AsyncRetrying(
            wait=wait_random_exponential(
                min=self.state.gateway.retry_wait_min,
                max=self.state.gateway.retry_wait_max,
            ),
            stop=stop_after_attempt(self.state.gateway.retry_attempts),
            retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self.client.post(self.state.gateway.endpoint, json=body)

    async def _generate(self, model: str, prompt: str, config: Optional[Dict[str, Any]] = None) -> str:
        """Single-shot call. Returns the envelope's ``text`` field."""
        try:
            response = await self._post(self._body(model, prompt, config))
        except httpx.HTTPError as e:
            raise GatewayError(f"{CONNECT_FAILURE_MESSAGE} ({e})") from e

        if response.is_error:
            raise self._gateway_error(response)

        try:
            envelope = response.json()
        except json.JSONDecodeError as e:
            raise ContentShapeError("API returned an unreadable response.") from e
        text = envelope.get("text") if isinstance(envelope, dict) else None
        if not isinstance(text, str):
            raise ContentShapeError("API returned an empty response.")
        return text

    async def _fetch_feature(self, failure: str, model: str, prompt: str,
                             config: Optional[Dict[str, Any]] = None) -> str:
        """
        Single-shot call for an inline feature.

        Gateway and envelope failures are logged with their detail and
        re-raised carrying only the feature's short message.
        """
        try:
            return await self._generate(model, prompt, config)
        except GatewayError as e:
            logger.error(f"{failure} Gateway said: {e}")
            raise GatewayError(failure, e.status_code, e.code) from e
        except ContentShapeError as e:
            logger.error(f"{failure} {e}")
            raise ContentShapeError(failure) from e

    @staticmethod
    def _decode(text: str, adapter: TypeAdapter, failure: str) -> Any:
        text = text.strip()
        if not text:
            raise ContentShapeError(failure)
        try:
            return adapter.validate_json(text)
        except ValidationError as e:
            logger.error(f"{failure} Payload rejected: {e.error_count()} validation error(s)")
            raise ContentShapeError(failure) from e

    @staticmethod
    def _no_thinking(**extra: Any) -> Dict[str, Any]:
        return {"thinkingConfig": {"thinkingBudget": 0}, **extra}

    # — CONTRACT B: DEFINITION STREAM —

    async def stream_definition(self, topic: str) -> AsyncIterator[str]:
        """
        Stream a one-paragraph definition for ``topic``.

        Yields text fragments in delivery order. Raises StreamError naming
        the topic if the stream cannot be opened or breaks part way.
        """
        prompt = (
            f'Provide a concise, single-paragraph encyclopedia-style definition for the term: "{topic}". '
            f"Be informative and neutral. Do not use markdown, titles, or any special formatting. "
            f"Respond with only the text of the definition itself."
        )
        body = self._body(self.state.provider.text_model, prompt, self._no_thinking(), stream=True)

        try:
            async with self.client.stream("POST", self.state.gateway.endpoint, json=body) as response:
                if response.is_error:
                    await response.aread()
                    raise self._gateway_error(response)
                async for fragment in response.aiter_text():
                    if fragment:
                        yield fragment
        except (GatewayError, httpx.HTTPError) as e:
            logger.error(f"Error streaming definition for '{topic}': {e}")
            raise StreamError(f'Could not generate content for "{topic}": {e}', topic) from e

    # — CONTRACT A: STRUCTURED FETCHES —

    async def generate_ascii_art(self, topic: str) -> AsciiArtData:
        prompt = (
            f'Generate an ASCII art visualization for the topic "{topic}". '
            f"The visualization's form should embody the word's essence. "
            f"Use this character palette: {ART_PALETTE}"
        )
        schema = {
            "type": "OBJECT",
            "properties": {
                "art": {"type": "STRING", "description": "A string containing the ASCII art visualization."}
            },
            "required": ["art"],
        }
        failure = "Could not load art."
        text = await self._fetch_feature(
            failure,
            self.state.provider.art_model,
            prompt,
            self._no_thinking(responseMimeType="application/json", responseSchema=schema),
        )
        return self._decode(text, _ART, failure)

    async def generate_animated_ascii_art(self, topic: str) -> AnimatedAsciiArtData:
        count = self.state.orchestrator.animation_frames
        prompt = (
            f'Generate a {count}-frame ASCII art animation about "{topic}". '
            f"Use this character palette: {ART_PALETTE}"
        )
        schema = {
            "type": "OBJECT",
            "properties": {
                "frames": {
                    "type": "ARRAY",
                    "description": f"An array of exactly {count} strings, where each string is a frame of the animation.",
                    "items": {"type": "STRING"},
                }
            },
            "required": ["frames"],
        }
        failure = "Could not load animation."
        text = await self._fetch_feature(
            failure,
            self.state.provider.art_model,
            prompt,
            self._no_thinking(responseMimeType="application/json", responseSchema=schema),
        )
        data = self._decode(text, _ANIMATION, failure)
        data.frames = data.frames[:count]
        return data

    async def get_related_topics(self, topic: str) -> List[str]:
        limit = self.state.orchestrator.related_topics_limit
        prompt = (
            f'Given the topic "{topic}", suggest {limit} tangentially related but interesting concepts '
            f"for further exploration. For example, for 'Photosynthesis', you might return "
            f'["Chlorophyll", "Cellular Respiration", "Carbon Cycle", "Stomata"].'
        )
        schema = {
            "type": "ARRAY",
            "description": f"An array of {limit} strings representing related topics.",
            "items": {"type": "STRING"},
        }
        failure = "Could not load related topics."
        text = await self._fetch_feature(
            failure,
            self.state.provider.text_model,
            prompt,
            self._no_thinking(responseMimeType="application/json", responseSchema=schema),
        )
        topics = self._decode(text, _TOPICS, failure)
        return topics[:limit]

    async def get_historical_fact(self, topic: str) -> Optional[str]:
        """One dated sentence about the topic, or None when nothing notable happened."""
        prompt = (
            f'Does the topic "{topic}" relate to a specific, significant historical event?\n'
            f"If so, provide a single, concise sentence about what happened on this day in history "
            f"related to it, and include a verifiable date.\n"
            f'If there is no direct, significant event, respond with the exact text "{NO_EVENT}".\n'
            f'Example response: "On this day, July 20, 1969, Apollo 11\'s lunar module landed on the moon."\n'
            f'Only respond with the sentence or "{NO_EVENT}".'
        )
        failure = "Could not load historical fact."
        fact = (await self._fetch_feature(
            failure, self.state.provider.text_model, prompt, self._no_thinking()
        )).strip()
        if not fact:
            raise ContentShapeError(failure)
        return None if fact == NO_EVENT else fact

    async def rate_difficulty(self, text: str) -> str:
        scale = ", ".join(f'"{level}"' for level in COMPLEXITY_LEVELS)
        prompt = (
            f"Analyze the following text and rate its reading complexity on this "
            f"{len(COMPLEXITY_LEVELS)}-point scale: {scale}.\n"
            f"Respond with ONLY the chosen rating string.\n"
            f'Text: "{text}"'
        )
        rating = (await self._generate(self.state.provider.text_model, prompt, self._no_thinking())).strip()
        if not rating:
            raise ContentShapeError("Could not rate difficulty.")
        return rating

    # — CONTRACT C: TRANSLATION —

    async def translate_text(self, text: str, target_language: str) -> str:
        if target_language == self.state.orchestrator.base_language:
            return text

        prompt = (
            f"Translate the following text into {target_language}.\n"
            f"Return only the translated text, with no additional commentary or formatting.\n"
            f'Text: "{text}"'
        )
        translated = (await self._generate(self.state.provider.text_model, prompt, self._no_thinking())).strip()
        if not translated:
            raise ContentShapeError("Could not translate text.")
        return translated

    # — CONNECTIVITY PROBE —

    async def validate_api_key(self) -> ProbeResult:
        """
        Make one minimal call to confirm the gateway is up and holds a usable key.

        Credential problems get the administrator message; anything else gets
        the generic connectivity message with the underlying detail.
        """
        try:
            await self._generate(self.state.provider.text_model, "test", {"maxOutputTokens": 1})
            return ProbeResult(is_valid=True)
        except ServiceError as e:
            logger.error(f"API key validation failed: {e}")
            detail = str(e)
            code = getattr(e, "code", None)
            if code == "missing_api_key" or any(m in detail.lower() for m in _CONFIG_ERROR_MARKERS):
                return ProbeResult(is_valid=False, error=CONFIG_FAILURE_MESSAGE)
            if detail.startswith(CONNECT_FAILURE_MESSAGE):
                return ProbeResult(is_valid=False, error=detail)
            return ProbeResult(is_valid=False, error=f"{CONNECT_FAILURE_MESSAGE} ({detail})")
