# orchestrator.py - Per-topic fetch lifecycle and the application shell around it

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from config import COMPLEXITY_LEVELS, OrchestratorConfig, WeaveState
from gemini_service import AnimatedAsciiArtData, AsciiArtData, GeminiService
from journey import Journey

logger = logging.getLogger("Orchestrator")

# component_errors keys, one per independently failing feature
ASCII_ART = "asciiArt"
RELATED_TOPICS = "relatedTopics"
HISTORICAL_FACT = "historicalFact"
ANIMATED_ART = "animatedArt"
TRANSLATION = "translation"

TRANSLATION_FAILED = "Translation failed."

@dataclass
class ViewState:
    """Everything the presentation layer renders for the current topic."""
    topic: str = ""
    content: str = ""
    translated_content: Optional[str] = None
    language: str = "en"
    is_loading: bool = True
    is_fading: bool = False
    error: Optional[str] = None
    component_errors: Dict[str, str] = field(default_factory=dict)
    ascii_art: Optional[AsciiArtData] = None
    animated_art: Optional[AnimatedAsciiArtData] = None
    related_topics: List[str] = field(default_factory=list)
    historical_fact: Optional[str] = None
    difficulty: Optional[str] = None

    @property
    def display_content(self) -> str:
        return self.translated_content or self.content

    @property
    def title(self) -> str:
        return f"{self.topic} - Weavewiki"

    @property
    def complexity_hint(self) -> str:
        if self.difficulty and self.difficulty in COMPLEXITY_LEVELS:
            return (
                f"AI-estimated reading complexity for this topic: "
                f"{self.difficulty}: {COMPLEXITY_LEVELS[self.difficulty]}"
            )
        return "AI-estimated reading complexity for this topic."

# Called with the current view and the fields that just changed
Listener = Callable[[ViewState, Dict[str, Any]], None]

class ContentOrchestrator:
    """
    Runs the fetch cycle for one topic at a time:

    1. Token       : mint a generation token, invalidating the previous one
    2. Reset       : clear every view field
    3. Fade        : short presentation delay
    4. Auxiliary   : art, related topics, fact and animation, all-settle
    5. Apply       : each auxiliary result or error lands in its own slot
    6. Stream      : definition fragments appended as they arrive, alongside step 4
    7. Difficulty  : best-effort rating of the finished definition

    Nothing in flight is ever aborted. Work started for an older token keeps
    running but every write it attempts is dropped.
    """

    def __init__(self, service: GeminiService, config: OrchestratorConfig,
                 listener: Optional[Listener] = None):
        self.service = service
        self.config = config
        self.listener = listener
        self.view = ViewState(language=config.base_language, is_loading=False)
        self._generation = 0

    # — GENERATION GUARD —

    def is_current(self, token: int) -> bool:
        return token == self._generation

    def _publish(self, changes: Dict[str, Any]) -> None:
        if self.listener is not None:
            self.listener(self.view, changes)

    def _apply(self, token: int, **changes: Any) -> bool:
        """Write ``changes`` into the view if ``token`` is still current."""
        if not self.is_current(token):
            return False
        for name, value in changes.items():
            setattr(self.view, name, value)
        self._publish(changes)
        return True

    def _record_error(self, token: int, feature: str, message: str) -> bool:
        if not self.is_current(token):
            return False
        errors = dict(self.view.component_errors)
        errors[feature] = message
        return self._apply(token, component_errors=errors)

    # — TOPIC TRANSITION —

    async def load_topic(self, topic: str) -> None:
        """Run one full fetch cycle for ``topic``."""
        # ----------------------------------------------------------------
        # STEP 1 — TOKEN
        # ----------------------------------------------------------------
        self._generation += 1
        token = self._generation
        logger.info(f"Loading topic '{topic}' (generation {token})")

        # ----------------------------------------------------------------
        # STEP 2 — RESET
        # ----------------------------------------------------------------
        self.view = ViewState(
            topic=topic,
            language=self.config.base_language,
            is_loading=True,
            is_fading=True,
        )
        self._publish({"topic": topic})

        # ----------------------------------------------------------------
        # STEP 3 — FADE
        # ----------------------------------------------------------------
        await asyncio.sleep(self.config.fade_delay)
        if not self._apply(token, is_fading=False):
            logger.info(f"Topic '{topic}' superseded during fade")
            return

        # ----------------------------------------------------------------
        # STEP 4-7 — AUXILIARY FETCHES ALONGSIDE THE DEFINITION STREAM
        # ----------------------------------------------------------------
        await asyncio.gather(
            self._load_auxiliary(token, topic),
            self._stream_definition(token, topic),
        )

        if self.is_current(token):
            logger.info(
                f"Topic '{topic}' complete: "
                f"{len(self.view.content)} chars, "
                f"{len(self.view.component_errors)} feature error(s)"
            )

    async def _load_auxiliary(self, token: int, topic: str) -> None:
        await asyncio.gather(
            self._settle(token, ASCII_ART, "ascii_art", self.service.generate_ascii_art(topic)),
            self._settle(token, RELATED_TOPICS, "related_topics", self.service.get_related_topics(topic)),
            self._settle(token, HISTORICAL_FACT, "historical_fact", self.service.get_historical_fact(topic)),
            self._settle(token, ANIMATED_ART, "animated_art", self.service.generate_animated_ascii_art(topic)),
        )

    async def _settle(self, token: int, feature: str, slot: str, call: Awaitable[Any]) -> None:
        try:
            value = await call
        except Exception as e:
            if self.is_current(token):
                logger.error(f"{feature} failed: {e}")
            self._record_error(token, feature, str(e) or f"Could not load {feature}.")
            return
        self._apply(token, **{slot: value})

    async def _stream_definition(self, token: int, topic: str) -> None:
        accumulated = ""
        try:
            async with aclosing(self.service.stream_definition(topic)) as fragments:
                async for fragment in fragments:
                    if not self.is_current(token):
                        logger.info(f"Dropping stale stream for '{topic}'")
                        return
                    accumulated += fragment
                    self._apply(token, content=accumulated)
        except Exception as e:
            if self.is_current(token):
                logger.error(f"Definition stream failed for '{topic}': {e}")
            # Partial text is never shown next to an error
            self._apply(token, error=str(e) or "An error occurred", content="", is_loading=False)
            return

        if not self._apply(token, is_loading=False):
            return

        if accumulated:
            await self._rate_difficulty(token, accumulated)

    async def _rate_difficulty(self, token: int, text: str) -> None:
        # Cosmetic only: failures are logged and never reach the view
        try:
            rating = await self.service.rate_difficulty(text)
        except Exception as e:
            logger.error(f"Difficulty rating failed: {e}")
            return
        self._apply(token, difficulty=rating)

    # — TRANSLATION —

    async def translate(self, language: str) -> bool:
        """
        Overlay a translation of the current definition.

        Ignored while a definition is loading or before any text exists. The
        base language clears the overlay without a network call. Returns True
        when the overlay was updated.
        """
        if self.view.is_loading or not self.view.content:
            logger.info(f"Translation to '{language}' ignored, no settled definition")
            return False
        if language not in self.config.languages:
            logger.warning(f"Unsupported language '{language}'")
            return False

        token = self._generation
        if language == self.config.base_language:
            return self._apply(token, language=language, translated_content=None)

        previous = self.view.language
        self._apply(token, language=language)
        try:
            translated = await self.service.translate_text(self.view.content, language)
        except Exception as e:
            logger.error(f"Translation to '{language}' failed: {e}")
            if self.view.language == language:
                # Selector goes back to the language still on display
                self._apply(token, language=previous)
            self._record_error(token, TRANSLATION, TRANSLATION_FAILED)
            return False

        if self.view.language != language:
            # A newer language choice was made while this one was in flight
            return False
        errors = {k: v for k, v in self.view.component_errors.items() if k != TRANSLATION}
        return self._apply(token, translated_content=translated, component_errors=errors)

class AppStatus(str, Enum):
    VALIDATING = "validating"
    CONFIG_ERROR = "config_error"
    READY = "ready"

class WeaveApp:
    """
    Application shell: validates the gateway once, then turns journey
    navigation into topic transitions.

    VALIDATING → CONFIG_ERROR (terminal) | READY
    """

    def __init__(self, service: GeminiService, journey: Journey, config: OrchestratorConfig,
                 listener: Optional[Listener] = None):
        self.service = service
        self.journey = journey
        self.status = AppStatus.VALIDATING
        self.config_error: Optional[str] = None
        self.orchestrator = ContentOrchestrator(service, config, listener)
        self._tasks: Set[asyncio.Task] = set()

    @property
    def view(self) -> ViewState:
        return self.orchestrator.view

    async def start(self) -> AppStatus:
        if self.status is not AppStatus.VALIDATING:
            return self.status

        result = await self.service.validate_api_key()
        if not result.is_valid:
            self.status = AppStatus.CONFIG_ERROR
            self.config_error = result.error
            logger.error(f"Configuration check failed: {result.error}")
            return self.status

        self.status = AppStatus.READY
        logger.info("Configuration check passed, ready")
        self._schedule(self.journey.current)
        return self.status

    def _schedule(self, topic: str) -> None:
        task = asyncio.create_task(self.orchestrator.load_topic(topic))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _after_navigation(self, previous: str) -> None:
        if self.status is AppStatus.READY and self.journey.current != previous:
            self._schedule(self.journey.current)

    def navigate(self, topic: str) -> bool:
        """Go to a new topic (search box, word click, related topic)."""
        previous = self.journey.current
        if not self.journey.go_to(topic):
            return False
        self._after_navigation(previous)
        return True

    def jump_to(self, index: int) -> bool:
        """Go to an existing journey entry (breadcrumb, slider)."""
        previous = self.journey.current
        if not self.journey.jump_to(index):
            return False
        self._after_navigation(previous)
        return True

    async def translate(self, language: str) -> bool:
        if self.status is not AppStatus.READY:
            return False
        return await self.orchestrator.translate(language)

    async def wait_idle(self) -> None:
        """Wait until every scheduled transition has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

# — ENTRY POINT —

async def _explore(topics: List[str]) -> None:
    state = WeaveState()
    journey = Journey(topics or None, seed_topic=state.orchestrator.seed_topic)

    shown = 0

    def show(view: ViewState, changes: Dict[str, Any]) -> None:
        nonlocal shown
        if "topic" in changes:
            shown = 0
            print(f"\n== {view.title} ==")
        elif "content" in changes and view.content:
            print(view.content[shown:], end="", flush=True)
            shown = len(view.content)

    service = GeminiService.connect(state)
    try:
        app = WeaveApp(service, journey, state.orchestrator, listener=show)
        if await app.start() is AppStatus.CONFIG_ERROR:
            print(f"Configuration Error: {app.config_error}")
            return
        await app.wait_idle()
        view = app.view
        print()
        if view.error:
            print(f"Error: {view.error}")
        if view.difficulty:
            print(f"Complexity: {view.difficulty}")
        if view.historical_fact:
            print(view.historical_fact)
        if view.related_topics:
            print(f"Related: {', '.join(view.related_topics)}")
        for feature, message in view.component_errors.items():
            print(f"[{feature}] {message}")
        print(f"Share: {journey.share_url(state.gateway.base_url)}")
    finally:
        await service.aclose()

if __name__ == "__main__":
    import sys
    logging.basicConfig(level=logging.WARNING)
    asyncio.run(_explore(sys.argv[1:]))
