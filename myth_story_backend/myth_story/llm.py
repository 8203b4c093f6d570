import json
import logging
import re
from typing import Any, Dict, List, Optional

import openai

from .errors import MalformedUpstreamResponse, MissingCredential, NetworkFailure, UpstreamRejected, quota_message
from .models import StoryRequest
from .prompts import SYSTEM_PROMPT, build_story_prompt

logger = logging.getLogger(__name__)

FALLBACK_TITLE = "Mythological Tale"
UNTITLED = "Untitled Story"

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def _clean_arcs(raw: Any) -> List[Dict[str, str]]:
    if not isinstance(raw, list):
        return []
    arcs = []
    for arc in raw:
        if isinstance(arc, dict) and isinstance(arc.get("title"), str) and isinstance(arc.get("content"), str):
            arcs.append({"title": arc["title"], "content": arc["content"]})
    return arcs


def extract_story(text: str) -> Dict[str, Any]:
    """Find the JSON object embedded in a free-text model reply.

    Falls back to the raw text as the story body when there is no usable object.
    """
    text = text or ""
    match = _JSON_OBJECT.search(text)
    if match:
        try:
            data = json.loads(match.group(0))
        except ValueError as e:
            logger.warning(f"Failed to parse JSON from story reply: {e}")
            data = None
        if isinstance(data, dict):
            title = data.get("title")
            story = data.get("story")
            return {
                "title": title.strip() if isinstance(title, str) and title.strip() else UNTITLED,
                "story": story if isinstance(story, str) and story.strip() else text,
                "storyArcs": _clean_arcs(data.get("storyArcs")),
            }
    logger.info("No JSON object in story reply, using raw text")
    return {"title": FALLBACK_TITLE, "story": text, "storyArcs": []}


class StoryWriter:
    """Relay-side story generation against an OpenAI-compatible chat endpoint."""

    provider_name = "Story model"

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", base_url: Optional[str] = None,
                 max_tokens: int = 4000, client=None):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_tokens = max_tokens
        self._client = client

    @classmethod
    def from_settings(cls, settings) -> "StoryWriter":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.story_model,
            base_url=settings.openai_base_url,
            max_tokens=settings.story_max_tokens,
        )

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise MissingCredential("OPENAI_API_KEY is not set; please configure your .env")
            self._client = openai.AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def write_story(self, req: StoryRequest) -> Dict[str, Any]:
        logger.info(f"Calling {self.model} to write a {req.length.value} {req.mythology} story")
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_story_prompt(req)},
        ]
        client = self._get_client()
        try:
            resp = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.8,
                max_tokens=self.max_tokens,
            )
        except openai.RateLimitError as e:
            logger.error(f"Story model rate limited: {e}")
            raise UpstreamRejected(quota_message(self.provider_name), status_code=429) from e
        except openai.APIStatusError as e:
            logger.error(f"Story model call failed {e.status_code}: {e.message}")
            raise UpstreamRejected(e.message or "Failed to generate story", status_code=e.status_code) from e
        except openai.APIConnectionError as e:
            logger.error(f"Story model unreachable: {e}")
            raise NetworkFailure(f"Could not reach the story model: {e}") from e
        except openai.APIError as e:
            logger.error(f"Story model call failed: {e.message}")
            raise UpstreamRejected(e.message or "Failed to generate story", status_code=500) from e

        content = resp.choices[0].message.content if resp.choices else None
        if not content:
            raise MalformedUpstreamResponse("Story model returned an empty reply")
        logger.info("Successfully received story reply")
        story = extract_story(content)
        story["storyPrompt"] = req.model_dump(mode="json", exclude_none=True)
        return story
