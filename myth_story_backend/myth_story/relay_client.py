"""
Clients for the relay's edge functions (story text and voice narration).
The relay holds the upstream LLM and voice credentials. Its own key is optional:
without one the request goes out with no Authorization header.
"""
import logging
from typing import Dict, Optional

from pydantic import ValidationError

from .errors import EmptyOrInvalidInput, MalformedUpstreamResponse
from .models import AudioResult, AudioSource, StoryArc, StoryRequest, StoryResult
from .provider_client import ProviderClient

logger = logging.getLogger(__name__)

STORY_PATH = "/functions/v1/generate-story"
VOICE_PATH = "/functions/v1/generate-voice"


class RelayClient(ProviderClient):
    provider_name = "Story relay"

    def __init__(self, base_url: str, api_key: str = "", **kwargs):
        super().__init__(api_key, **kwargs)
        self.base_url = base_url.rstrip("/")

    def _credential(self, override: Optional[str] = None) -> str:
        return (override or self.api_key or "").strip()

    def _auth_headers(self, key: str) -> Dict[str, str]:
        if not key:
            return {"Content-Type": "application/json"}
        return super()._auth_headers(key)


class StoryRelayClient(RelayClient):
    async def generate_story(self, request: StoryRequest, api_key: Optional[str] = None) -> StoryResult:
        # Reject before any network call
        if not request.mythology or not request.mythology.strip():
            raise EmptyOrInvalidInput("Mythology is required")
        key = self._credential(api_key)

        logger.info(f"Requesting {request.length.value} {request.mythology} story from relay")
        r = await self._send(
            "POST",
            f"{self.base_url}{STORY_PATH}",
            default_error="Error generating story",
            headers=self._auth_headers(key),
            json=request.model_dump(mode="json", exclude_none=True),
        )
        body = self._json(r)
        if body.get("error"):
            raise MalformedUpstreamResponse(str(body["error"]))

        title = body.get("title")
        story = body.get("story")
        if not isinstance(title, str) or not title.strip() or not isinstance(story, str) or not story.strip():
            raise MalformedUpstreamResponse("Story relay returned no title or story text")
        try:
            arcs = [StoryArc.model_validate(arc) for arc in body.get("storyArcs") or []]
        except ValidationError as e:
            raise MalformedUpstreamResponse("Story relay returned malformed story arcs") from e

        logger.info(f"Story generated: {title!r} with {len(arcs)} arcs")
        return StoryResult(title=title.strip(), story=story, story_arcs=arcs, request=request)


class VoiceRelayClient(RelayClient):
    provider_name = "Voice relay"

    async def generate_voice(self, text: str, voice_id: Optional[str] = None, model_id: Optional[str] = None,
                             api_key: Optional[str] = None) -> AudioResult:
        text = self._require_prompt(text, "Text content")
        key = self._credential(api_key)

        payload = {"text": text}
        if voice_id:
            payload["voiceId"] = voice_id
        if model_id:
            payload["modelId"] = model_id
        logger.info(f"Requesting narration for {len(text)} characters (voice={voice_id or 'default'})")

        r = await self._send(
            "POST",
            f"{self.base_url}{VOICE_PATH}",
            default_error="Failed to generate audio",
            headers=self._auth_headers(key),
            json=payload,
        )
        body = self._json(r)
        audio = body.get("audioContent")
        if not isinstance(audio, str) or not audio:
            raise MalformedUpstreamResponse("No audio was returned from the voice relay")
        return AudioResult(
            source=AudioSource.SYNTHESIZED,
            audio_content=audio,
            format=body.get("format") or "mp3",
            voice_id=voice_id,
        )
