import logging
from typing import Optional

from .errors import MalformedUpstreamResponse
from .models import ImageResult
from .provider_client import ProviderClient, mask_key

logger = logging.getLogger(__name__)

STABILITY_API_URL = "https://api.stability.ai/v1/generation/stable-diffusion-xl-1024-v1-0/text-to-image"
PIXLR_API_URL = "https://api.pixlr.com/generator/v1"

PROMPT_ENHANCEMENT = "detailed illustration, epic scene, dramatic lighting, mythological style"


def enhance_prompt(prompt: str) -> str:
    # Prompts under 15 characters get the house style appended
    if len(prompt) < 15:
        return f"{prompt}, {PROMPT_ENHANCEMENT}"
    return prompt


class ImageClient(ProviderClient):
    async def generate_image(self, prompt: str, api_key: Optional[str] = None,
                             width: int = 1024, height: int = 1024) -> ImageResult:
        raise NotImplementedError


class StabilityImageClient(ImageClient):
    provider_name = "Stability AI"

    def __init__(self, api_key: str = "", *, url: str = STABILITY_API_URL, samples: int = 1, **kwargs):
        super().__init__(api_key, **kwargs)
        self.url = url
        self.samples = samples

    async def generate_image(self, prompt: str, api_key: Optional[str] = None,
                             width: int = 1024, height: int = 1024) -> ImageResult:
        key = self._credential(api_key)
        prompt = enhance_prompt(self._require_prompt(prompt, "Image prompt"))
        logger.info(f"Sending request to Stability AI with key {mask_key(key)}, {width}x{height}: {prompt[:100]}")

        r = await self._send(
            "POST",
            self.url,
            default_error="Error generating image",
            headers={**self._auth_headers(key), "Accept": "application/json"},
            json={
                "text_prompts": [{"text": prompt, "weight": 1}],
                "cfg_scale": 7,
                "height": height,
                "width": width,
                "samples": self.samples,
                "steps": 30,
            },
        )
        body = self._json(r)
        artifacts = body.get("artifacts") or []
        encoded = artifacts[0].get("base64") if artifacts and isinstance(artifacts[0], dict) else None
        if not encoded:
            logger.error("Stability AI succeeded but returned no artifacts")
            raise MalformedUpstreamResponse("No image was generated in the response")
        return ImageResult(url=f"data:image/png;base64,{encoded}", prompt=prompt, provider="stability")


class PixlrImageClient(ImageClient):
    provider_name = "Pixlr"

    def __init__(self, api_key: str = "", *, url: str = PIXLR_API_URL, **kwargs):
        super().__init__(api_key, **kwargs)
        self.url = url.rstrip("/")

    async def generate_image(self, prompt: str, api_key: Optional[str] = None,
                             width: int = 1024, height: int = 1024) -> ImageResult:
        key = self._credential(api_key)
        prompt = enhance_prompt(self._require_prompt(prompt, "Image prompt"))
        logger.info(f"Sending request to Pixlr with key {mask_key(key)}, {width}x{height}: {prompt[:100]}")

        r = await self._send(
            "POST",
            f"{self.url}/text2image",
            default_error="Error generating image",
            headers=self._auth_headers(key),
            json={"prompt": prompt, "width": width, "height": height, "num_outputs": 1},
        )
        body = self._json(r)
        results = body.get("results") or []
        url = results[0].get("image_url") if results and isinstance(results[0], dict) else None
        if not url:
            logger.error("Pixlr succeeded but returned no image URL")
            raise MalformedUpstreamResponse("No image was generated in the response")
        return ImageResult(url=url, prompt=prompt, provider="pixlr")


def image_client_for(provider: str, api_key: str, **kwargs) -> ImageClient:
    if provider == "pixlr":
        return PixlrImageClient(api_key, **kwargs)
    return StabilityImageClient(api_key, **kwargs)
