from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional
import os

from dotenv import load_dotenv

load_dotenv()  # loads .env into environment for local dev

@dataclass
class ProviderConfig:
    # Only the gateway process ever reads the credential
    api_key: Optional[str] = field(
        default_factory=lambda: os.getenv("API_KEY") or os.getenv("GEMINI_API_KEY")
    )
    art_model: str = "gemini-2.5-flash"
    text_model: str = "gemini-flash-lite-latest"

@dataclass
class GatewayConfig:
    base_url: str = field(
        default_factory=lambda: os.getenv("WEAVEWIKI_GATEWAY_URL", "http://localhost:8080")
    )
    endpoint: str = "/api/generate"
    timeout: float = field(
        default_factory=lambda: float(os.getenv("WEAVEWIKI_TIMEOUT", "30"))
    )
    retry_attempts: int = 2
    retry_wait_min: float = 1.0
    retry_wait_max: float = 5.0

@dataclass
class ServerConfig:
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8080")))
    allowed_origin: str = field(default_factory=lambda: os.getenv("ALLOWED_ORIGIN", "*"))
    dist_dir: str = field(
        default_factory=lambda: os.getenv(
            "WEAVEWIKI_DIST_DIR",
            os.path.join(os.path.dirname(os.path.abspath(__file__)), "dist"),
        )
    )

@dataclass
class OrchestratorConfig:
    seed_topic: str = "Metacognition"
    fade_delay: float = 0.3
    base_language: str = "en"
    languages: Dict[str, str] = field(default_factory=lambda: {
        "en": "English",
        "es": "Spanish",
        "fr": "French",
        "ja": "Japanese",
        "de": "German",
    })
    related_topics_limit: int = 4
    animation_frames: int = 3

# Reading complexity scale used by the difficulty rating
COMPLEXITY_LEVELS: Dict[str, str] = {
    "Very Simple": "Akin to \"Explain Like I'm 5.\"",
    "Simple": "A basic, clear, and direct introduction.",
    "General Audience": "Accessible to anyone, like a popular science article.",
    "High School": "Standard textbook language.",
    "Advanced High School": "Requires some prior knowledge (e.g., AP/IB level).",
    "Undergraduate": "Introductory college-level concepts.",
    "Advanced Undergraduate": "Upper-division university material.",
    "Graduate (Master's)": "Assumes a solid foundation in the field.",
    "Graduate (Doctoral)": "Deeply technical and research-focused.",
    "Specialist": "For professionals actively working in the field.",
    "Scholarly": "For academic peers, highly theoretical.",
    "Pioneering": "At the absolute cutting-edge of current knowledge.",
}

ART_PALETTE = "│─┌┐└┘├┤┬┴┼►◄▲▼○●◐◑░▒▓█▀▄■□▪▫★☆♦♠♣♥⟨⟩/\\_|."

@dataclass
class WeaveState:
    """
    Root configuration for one Weavewiki process.
    Defaults are provided for all fields to ensure safe instantiation.
    """
    app_name: str = "Weavewiki"
    version: str = "1.0.0"
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
