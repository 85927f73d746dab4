"""Shared fixtures and fakes for the Weavewiki test suite.

Provides:
- A WeaveState tuned for tests (no fade delay, single fast retry, no dist dir)
- FakeService: a scripted stand-in for GeminiService used by orchestrator tests
- FakeProvider: a scripted stand-in for ProviderLayer used by gateway tests
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest

from config import GatewayConfig, OrchestratorConfig, ProviderConfig, ServerConfig, WeaveState
from gemini_service import AnimatedAsciiArtData, AsciiArtData, ProbeResult

# ============================================================================
# CONFIGURATION
# ============================================================================


@pytest.fixture
def state(tmp_path) -> WeaveState:
    """Configuration with every delay removed."""
    return WeaveState(
        provider=ProviderConfig(api_key="test-key"),
        gateway=GatewayConfig(
            base_url="http://gateway.test",
            timeout=5.0,
            retry_attempts=1,
            retry_wait_min=0.0,
            retry_wait_max=0.01,
        ),
        server=ServerConfig(port=8080, allowed_origin="*", dist_dir=str(tmp_path / "no-dist")),
        orchestrator=OrchestratorConfig(fade_delay=0.0),
    )


@pytest.fixture
def orchestrator_config(state: WeaveState) -> OrchestratorConfig:
    return state.orchestrator


# ============================================================================
# FAKE SERVICE (caller side)
# ============================================================================


class FakeService:
    """Scripted GeminiService.

    - ``fragments[topic]`` lists what the stream yields; an ``asyncio.Event``
      entry pauses the stream until set, an exception entry is raised.
    - ``failures[method]`` makes that method raise.
    - ``gates[(method, topic)]`` pauses that call until the event is set.
    """

    def __init__(self) -> None:
        self.fragments: Dict[str, List[Any]] = {}
        self.failures: Dict[str, Exception] = {}
        self.gates: Dict[Tuple[str, str], asyncio.Event] = {}
        self.calls: List[Tuple[str, str]] = []
        self.probe = ProbeResult(is_valid=True)
        self.difficulty = "Undergraduate"

    async def _enter(self, method: str, key: str) -> None:
        self.calls.append((method, key))
        gate = self.gates.get((method, key))
        if gate is not None:
            await gate.wait()
        if method in self.failures:
            raise self.failures[method]

    def called(self, method: str) -> List[str]:
        return [key for name, key in self.calls if name == method]

    async def validate_api_key(self) -> ProbeResult:
        self.calls.append(("validate_api_key", ""))
        return self.probe

    async def generate_ascii_art(self, topic: str) -> AsciiArtData:
        await self._enter("generate_ascii_art", topic)
        return AsciiArtData(art=f"[{topic}]")

    async def get_related_topics(self, topic: str) -> List[str]:
        await self._enter("get_related_topics", topic)
        return [f"{topic} {i}" for i in range(1, 5)]

    async def get_historical_fact(self, topic: str) -> Optional[str]:
        await self._enter("get_historical_fact", topic)
        return f"On this day something happened to {topic}."

    async def generate_animated_ascii_art(self, topic: str) -> AnimatedAsciiArtData:
        await self._enter("generate_animated_ascii_art", topic)
        return AnimatedAsciiArtData(frames=[f"{topic}-1", f"{topic}-2", f"{topic}-3"])

    async def stream_definition(self, topic: str):
        self.calls.append(("stream_definition", topic))
        for item in self.fragments.get(topic, [f"{topic} is a topic."]):
            if isinstance(item, asyncio.Event):
                await item.wait()
            elif isinstance(item, Exception):
                raise item
            else:
                yield item

    async def rate_difficulty(self, text: str) -> str:
        await self._enter("rate_difficulty", text)
        return self.difficulty

    async def translate_text(self, text: str, target_language: str) -> str:
        await self._enter("translate_text", target_language)
        return f"({target_language}) {text}"


@pytest.fixture
def fake_service() -> FakeService:
    return FakeService()


# ============================================================================
# FAKE PROVIDER (gateway side)
# ============================================================================


class FakeProvider:
    """Scripted ProviderLayer recording every upstream call."""

    def __init__(self, text: str = "", fragments: Optional[List[str]] = None,
                 error: Optional[Exception] = None, stream_error: Optional[Exception] = None) -> None:
        self.text = text
        self.fragments = fragments or []
        self.error = error
        self.stream_error = stream_error
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, model: str, contents: Any, config: Optional[Dict[str, Any]] = None) -> str:
        self.calls.append({"model": model, "contents": contents, "config": config, "stream": False})
        if self.error:
            raise self.error
        return self.text

    async def stream(self, model: str, contents: Any, config: Optional[Dict[str, Any]] = None):
        self.calls.append({"model": model, "contents": contents, "config": config, "stream": True})
        if self.stream_error:
            raise self.stream_error
        for fragment in self.fragments:
            yield fragment
