import logging
from typing import Any, Dict, Optional

from .errors import EmptyOrInvalidInput, MalformedUpstreamResponse
from .models import ModelTask, ModelTaskStatus
from .provider_client import ProviderClient, mask_key

logger = logging.getLogger(__name__)

MESHY_API_URL = "https://api.meshy.ai/v2/text-to-3d"
MASTERPIECEX_API_URL = "https://api.masterpiecex.com/v1/image"

DEFAULT_STYLE = "realistic"
DEFAULT_NEGATIVE_PROMPT = "blurry, distorted, low quality"


class TextTo3DClient(ProviderClient):
    """Deferred text-to-3D provider: `submit` hands back a task, `check_status` reads it."""

    # Output field names, first match wins.
    viewer_fields = ("viewer_url",)
    glb_fields = ("glb_url",)
    thumbnail_fields = ("thumbnail",)

    def __init__(self, api_key: str = "", *, url: str = "", **kwargs):
        super().__init__(api_key, **kwargs)
        self.url = url.rstrip("/")

    def _submit_body(self, prompt: str, style: str, negative_prompt: str) -> Dict[str, Any]:
        return {"prompt": prompt, "style": style, "negative_prompt": negative_prompt}

    async def submit(self, prompt: str, api_key: Optional[str] = None, style: str = DEFAULT_STYLE,
                     negative_prompt: str = DEFAULT_NEGATIVE_PROMPT) -> ModelTask:
        key = self._credential(api_key)
        prompt = self._require_prompt(prompt, "Character prompt")
        logger.info(f"Sending request to {self.provider_name} with key {mask_key(key)}, style {style}: {prompt[:100]}")

        r = await self._send(
            "POST",
            self.url,
            default_error="Error generating 3D model",
            headers=self._auth_headers(key),
            json=self._submit_body(prompt, style or DEFAULT_STYLE, negative_prompt or DEFAULT_NEGATIVE_PROMPT),
        )
        body = self._json(r)
        task_id = body.get("id") or body.get("result")
        if not task_id or not isinstance(task_id, str):
            raise MalformedUpstreamResponse(f"No task ID was returned from {self.provider_name}")
        logger.info(f"{self.provider_name} task created with ID: {task_id}")
        return ModelTask(task_id=task_id, status=ModelTaskStatus.PROCESSING, prompt=prompt)

    async def check_status(self, task_id: str, api_key: Optional[str] = None) -> ModelTask:
        if not task_id or not task_id.strip():
            raise EmptyOrInvalidInput("Task ID is required")
        key = self._credential(api_key)
        task_id = task_id.strip()

        r = await self._send(
            "GET",
            f"{self.url}/{task_id}",
            default_error="Error checking 3D model status",
            headers=self._auth_headers(key),
        )
        body = self._json(r)
        raw_status = body.get("status")
        status = ModelTaskStatus.from_provider(raw_status)
        logger.info(f"{self.provider_name} task {task_id} status: {raw_status}")

        if status == ModelTaskStatus.COMPLETED:
            output = body.get("output") if isinstance(body.get("output"), dict) else body
            return ModelTask(
                task_id=task_id,
                status=status,
                model_url=_first(output, self.viewer_fields),
                glb_url=_first(output, self.glb_fields),
                thumbnail_url=_first(output, self.thumbnail_fields),
            )
        if status == ModelTaskStatus.FAILED:
            reason = body.get("error")
            if isinstance(reason, dict):
                reason = reason.get("message")
            reason = reason or "Model generation failed without specific error"
            return ModelTask(task_id=task_id, status=status, error=f"Model generation failed: {reason}")
        return ModelTask(task_id=task_id, status=ModelTaskStatus.PROCESSING)


class MeshyModelClient(TextTo3DClient):
    provider_name = "Meshy AI"
    viewer_fields = ("viewer_url",)
    glb_fields = ("glb", "glb_url")
    thumbnail_fields = ("thumbnail", "thumbnail_url")

    def __init__(self, api_key: str = "", *, url: str = MESHY_API_URL, **kwargs):
        super().__init__(api_key, url=url, **kwargs)


class MasterpieceXModelClient(TextTo3DClient):
    provider_name = "MasterpieceX"
    viewer_fields = ("viewer_url", "html_url")
    glb_fields = ("glb_url", "download_url")
    thumbnail_fields = ("thumbnail", "image_url")

    def __init__(self, api_key: str = "", *, url: str = MASTERPIECEX_API_URL, model: str = "masterpiece-3d-v1.0",
                 **kwargs):
        super().__init__(api_key, url=url, **kwargs)
        self.model = model

    def _submit_body(self, prompt: str, style: str, negative_prompt: str) -> Dict[str, Any]:
        return {"prompt": prompt, "negative_prompt": negative_prompt, "model": self.model}


def _first(data: Dict[str, Any], fields) -> Optional[str]:
    for field in fields:
        value = data.get(field)
        if isinstance(value, str) and value:
            return value
    return None


def model_client_for(provider: str, api_key: str, **kwargs) -> TextTo3DClient:
    if provider == "masterpiecex":
        return MasterpieceXModelClient(api_key, **kwargs)
    return MeshyModelClient(api_key, **kwargs)
