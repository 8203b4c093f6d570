import base64
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .elevenlabs_client import ElevenLabsClient
from .errors import EmptyOrInvalidInput, MissingCredential, ProviderError, UpstreamRejected
from .image_clients import image_client_for
from .llm import StoryWriter
from .model_clients import model_client_for
from .models import (
    MYTHOLOGIES,
    THEMES,
    ImageRequest,
    ModelRequest,
    ModelStatusRequest,
    StoryLength,
    StoryRequest,
    VoiceRequest,
)
from .settings import Settings, load_settings

logger = logging.getLogger(__name__)

CORS_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]
OPEN_PATHS = ("/health",)


def _status_for(e: ProviderError) -> int:
    if isinstance(e, EmptyOrInvalidInput):
        return 400
    if isinstance(e, UpstreamRejected) and e.status_code:
        return e.status_code
    return 500


def _presented_key(request: Request) -> str:
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return request.headers.get("apikey", "").strip()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    app = FastAPI(title="Myth Story Relay")
    app.state.settings = settings
    app.state.story_writer = StoryWriter.from_settings(settings)
    app.state.voice = ElevenLabsClient.from_settings(settings)
    app.state.image_client = image_client_for(settings.image_provider, settings.image_api_key,
                                              timeout=max(settings.http_timeout_s, 60.0))
    app.state.model_client = model_client_for(settings.model_provider, settings.model_api_key,
                                              timeout=settings.http_timeout_s)

    @app.middleware("http")
    async def require_relay_key(request: Request, call_next):
        expected = request.app.state.settings.relay_api_key
        if (expected and request.method != "OPTIONS" and request.url.path not in OPEN_PATHS
                and _presented_key(request) != expected):
            logger.warning(f"Rejected {request.method} {request.url.path}: missing or wrong relay key")
            return JSONResponse({"error": "Unauthorized"}, status_code=401)
        return await call_next(request)

    # Outermost, so pre-flights are answered before the key check
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins or ["*"],
        allow_credentials=False,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=CORS_HEADERS,
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request body") if errors else "Invalid request body"
        logger.error(f"Invalid body for {request.url.path}: {message}")
        return JSONResponse({"error": message}, status_code=400)

    @app.get("/health")
    def health():
        missing = app.state.settings.missing_keys()
        logger.info(f"Health check: API keys present = {not missing}")
        return {"ok": True, "has_keys": not missing, "missing": missing}

    @app.get("/functions/v1/story-options")
    def story_options():
        return {
            "mythologies": MYTHOLOGIES,
            "themes": THEMES,
            "lengths": [{"value": length.value, "readingMinutes": length.reading_minutes} for length in StoryLength],
        }

    @app.post("/functions/v1/generate-story")
    async def generate_story(req: StoryRequest):
        try:
            story = await app.state.story_writer.write_story(req)
        except ProviderError as e:
            logger.error(f"Error generating story: {e.message}")
            return JSONResponse({"error": e.message, "title": "", "story": ""}, status_code=_status_for(e))
        return story

    @app.post("/functions/v1/generate-voice")
    async def generate_voice(req: VoiceRequest):
        if not req.text or not req.text.strip():
            return JSONResponse({"error": "Text content is required"}, status_code=400)
        try:
            audio = await app.state.voice.tts_to_bytes(req.text, voice_id=req.voice_id, model_id=req.model_id)
        except MissingCredential as e:
            logger.error(f"Voice relay misconfigured: {e.message}")
            return JSONResponse({"error": e.message}, status_code=500)
        except ProviderError as e:
            logger.error(f"Error generating voice: {e.message}")
            return JSONResponse({"error": "Failed to generate audio", "details": e.details or e.message},
                                status_code=_status_for(e))
        return {"audioContent": base64.b64encode(audio).decode("ascii"), "format": "mp3"}

    @app.post("/functions/v1/generate-image")
    async def generate_image(req: ImageRequest):
        try:
            image = await app.state.image_client.generate_image(req.prompt, api_key=req.api_key,
                                                                width=req.width, height=req.height)
        except ProviderError as e:
            logger.error(f"Error generating image: {e.message}")
            return JSONResponse(e.to_dict(), status_code=_status_for(e))
        return {"url": image.url, "provider": image.provider}

    @app.post("/functions/v1/generate-model")
    async def generate_model(req: ModelRequest):
        try:
            task = await app.state.model_client.submit(req.prompt, api_key=req.api_key, style=req.style,
                                                       negative_prompt=req.negative_prompt)
        except ProviderError as e:
            logger.error(f"Error submitting 3D model: {e.message}")
            return JSONResponse(e.to_dict(), status_code=_status_for(e))
        return {"taskId": task.task_id, "status": task.status.value}

    @app.post("/functions/v1/model-status")
    async def model_status(req: ModelStatusRequest):
        try:
            task = await app.state.model_client.check_status(req.task_id, api_key=req.api_key)
        except ProviderError as e:
            logger.error(f"Error checking 3D model status: {e.message}")
            return JSONResponse(e.to_dict(), status_code=_status_for(e))
        return task.model_dump(mode="json", by_alias=True, exclude={"prompt"})

    return app


app = create_app()
