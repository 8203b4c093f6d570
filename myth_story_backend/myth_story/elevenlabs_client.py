import logging
from typing import Optional

from .errors import MalformedUpstreamResponse
from .provider_client import ProviderClient

logger = logging.getLogger(__name__)

ELEVENLABS_API_URL = "https://api.elevenlabs.io/v1/text-to-speech"
DEFAULT_VOICE_ID = "EXAVITQu4vr4xnSDxMaL"  # Sarah
DEFAULT_MODEL_ID = "eleven_turbo_v2"


class ElevenLabsClient(ProviderClient):
    provider_name = "ElevenLabs"

    def __init__(self, api_key: str = "", *, voice_id: str = DEFAULT_VOICE_ID, model_id: str = DEFAULT_MODEL_ID,
                 url: str = ELEVENLABS_API_URL, **kwargs):
        super().__init__(api_key, **kwargs)
        self.voice_id = voice_id or DEFAULT_VOICE_ID
        self.model_id = model_id or DEFAULT_MODEL_ID
        self.url = url.rstrip("/")

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "ElevenLabsClient":
        return cls(
            settings.elevenlabs_api_key,
            voice_id=settings.elevenlabs_voice_id,
            model_id=settings.elevenlabs_model_id,
            timeout=max(settings.http_timeout_s, 60.0),
            **kwargs,
        )

    def _headers(self, key: str):
        return {
            "xi-api-key": key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }

    async def tts_to_bytes(self, text: str, voice_id: Optional[str] = None, model_id: Optional[str] = None) -> bytes:
        key = self._credential()
        text = self._require_prompt(text, "Text content")
        voice = voice_id or self.voice_id
        model = model_id or self.model_id
        payload = {
            "text": text,
            "model_id": model,
            "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
        }
        logger.info(f"Generating voice with ElevenLabs for text: {text[:50]}... (voice={voice}, model={model})")

        r = await self._send("POST", f"{self.url}/{voice}", default_error="Failed to generate audio",
                             headers=self._headers(key), json=payload)
        if not r.content:
            raise MalformedUpstreamResponse("ElevenLabs returned no audio")
        logger.info(f"Voice generation successful, {len(r.content)} bytes")
        return r.content
