# server.py - FastAPI gateway: forwards generation requests upstream and serves the UI

import logging
from pathlib import Path
from typing import Any, AsyncGenerator, AsyncIterator, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from pydantic import BaseModel

from config import WeaveState
from provider import ProviderLayer

# — LOGGING —

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
)
logger = logging.getLogger("Gateway")

MISSING_KEY_MESSAGE = "API key is not configured on the server."

# — SCHEMAS —

class GenerateRequest(BaseModel):
    model: str
    contents: Any
    config: Optional[Dict[str, Any]] = None
    stream: bool = False

# — HELPERS —

def _error(message: str, code: str, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": code})

async def _prime(fragments: AsyncGenerator[str, None]) -> AsyncIterator[str]:
    """
    Pull the first fragment before the response starts so that a failed
    upstream connection still gets a JSON error instead of an empty 200.

    The upstream generator is closed whenever the body stops, including
    when a client disconnects part way.
    """
    try:
        first = await fragments.__anext__()
    except StopAsyncIteration:
        first = None

    async def body() -> AsyncIterator[str]:
        try:
            if first is None:
                return
            yield first
            async for fragment in fragments:
                yield fragment
        except Exception as e:
            # Headers are already sent; abort the body so the caller sees a broken stream
            logger.error(f"Upstream stream failed mid-response: {e}")
            raise
        finally:
            await fragments.aclose()

    return body()

def _resolve_static(dist_dir: Path, full_path: str) -> Path:
    """Map a request path to a file in dist, falling back to index.html."""
    root = dist_dir.resolve()
    candidate = (root / full_path).resolve()
    if full_path and candidate.is_file() and root in candidate.parents:
        return candidate
    return root / "index.html"

# — APP FACTORY —

def create_app(state: Optional[WeaveState] = None, provider: Optional[ProviderLayer] = None) -> FastAPI:
    """
    Build the gateway app.

    The provider is created here (never at import time of other modules) and
    lives as long as the app. Without a credential the app still starts so
    that callers get a detectable ``missing_api_key`` error.
    """
    state = state or WeaveState()
    if provider is None and state.provider.api_key:
        provider = ProviderLayer(state.provider)
    if provider is None:
        logger.warning("No API key configured, /api/generate will refuse requests")

    app = FastAPI(title=f"{state.app_name} Gateway", version=state.version)
    app.state.weave = state
    app.state.provider = provider

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[state.server.allowed_origin],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # — ENDPOINTS —

    @app.get("/health")
    async def health():
        """Status polling for deploy checks."""
        return {
            "status": "online",
            "api_key_configured": app.state.provider is not None,
            "art_model": state.provider.art_model,
            "text_model": state.provider.text_model,
            "version": state.version,
        }

    @app.post("/api/generate")
    async def generate(req: GenerateRequest):
        """
        Forward a generation request upstream.

        Body:
            model:    upstream model identifier
            contents: prompt contents, passed through verbatim
            config:   generation config (schema, thinking budget, ...)
            stream:   when true, reply with a chunked text/plain body

        Returns:
            {"text": ...} for single-shot calls, the raw fragments otherwise
        """
        upstream: Optional[ProviderLayer] = app.state.provider
        if upstream is None:
            return _error(MISSING_KEY_MESSAGE, "missing_api_key")

        try:
            if req.stream:
                logger.info(f"Streaming request for model {req.model}")
                body = await _prime(upstream.stream(req.model, req.contents, req.config))
                return StreamingResponse(body, media_type="text/plain; charset=utf-8")

            text = await upstream.generate(req.model, req.contents, req.config)
            return {"text": text}

        except Exception as e:
            logger.error(f"Error calling generation API: {e}")
            return _error(f"Failed to generate content from the AI service: {e}", "upstream_error")

    dist_dir = Path(state.server.dist_dir)
    if dist_dir.is_dir():
        logger.info(f"Serving static UI from {dist_dir}")

        @app.get("/{full_path:path}")
        async def spa(full_path: str):
            """Serve built assets; any unknown path gets the SPA entry page."""
            return FileResponse(_resolve_static(dist_dir, full_path))

    return app

# — COMPOSITION ROOT —

app = create_app()

# — ENTRY POINT —

if __name__ == "__main__":
    import uvicorn
    port = app.state.weave.server.port
    logger.info(f"Starting server on port {port}")
    uvicorn.run(app, host="0.0.0.0", port=port)
