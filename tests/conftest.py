import json

import httpx
import pytest

from myth_story.errors import ProviderError
from myth_story.models import (
    AudioResult,
    ImageResult,
    ModelTask,
    ModelTaskStatus,
    StoryArc,
    StoryRequest,
    StoryResult,
)
from myth_story.narration import Narrator, NullAudioSink
from myth_story.orchestrator import GenerationOrchestrator
from myth_story.poller import ModelTaskPoller
from myth_story.settings import Settings
from myth_story.storage import MemoryKVStore, SavedCollection


def make_story(title="The Trials of Odysseus", mythology="Greek", character=None, theme="Heroism",
               arcs=2) -> StoryResult:
    return StoryResult(
        title=title,
        story=f"{title} begins on the wine-dark sea.\n\nThe hero returns home.",
        story_arcs=[StoryArc(title=f"Arc {i + 1}", content=f"Part {i + 1} of {title}.") for i in range(arcs)],
        request=StoryRequest(mythology=mythology, character=character, theme=theme, length="short"),
    )


def json_transport(handler):
    """MockTransport whose handler returns (status, body); dict bodies are sent as JSON."""
    calls = []

    def _handle(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        status, body = handler(request)
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        if isinstance(body, bytes):
            return httpx.Response(status, content=body)
        return httpx.Response(status, text=body or "")

    transport = httpx.MockTransport(_handle)
    transport.calls = calls
    return transport


def request_json(request: httpx.Request) -> dict:
    return json.loads(request.content.decode("utf-8"))


class FakeStoryClient:
    """Returns (or raises) the queued results in order; the last one repeats."""

    def __init__(self, *results):
        self.results = list(results) or [make_story()]
        self.calls = []

    async def generate_story(self, request, api_key=None):
        self.calls.append(request)
        item = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(item, ProviderError):
            raise item
        return item.model_copy(update={"request": request})


class GatedStoryClient(FakeStoryClient):
    """Holds every request until `release` is set; tracks how many overlap."""

    def __init__(self, *results):
        super().__init__(*results)
        self.release = None
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate_story(self, request, api_key=None):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await self.release.wait()
            return await super().generate_story(request, api_key)
        finally:
            self.in_flight -= 1


class FakeImageClient:
    def __init__(self, error=None):
        self.error = error
        self.prompts = []

    async def generate_image(self, prompt, api_key=None, width=1024, height=1024):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return ImageResult(url="https://images.example/scene.png", prompt=prompt, provider="stability")


class FakeVoiceClient:
    def __init__(self, error=None):
        self.error = error
        self.texts = []

    async def generate_voice(self, text, voice_id=None, model_id=None, api_key=None):
        self.texts.append(text)
        if self.error:
            raise self.error
        return AudioResult(audio_content="SUQzBAAAAAAA", voice_id=voice_id)


class FakeModelClient:
    """Hands out `task-1` and answers status checks from `statuses`, then keeps processing."""

    def __init__(self, statuses=(), submit_error=None):
        self.statuses = list(statuses)
        self.submit_error = submit_error
        self.prompts = []
        self.status_calls = 0

    async def submit(self, prompt, api_key=None, style="realistic", negative_prompt=""):
        self.prompts.append(prompt)
        if self.submit_error:
            raise self.submit_error
        return ModelTask(task_id="task-1", status=ModelTaskStatus.PROCESSING, prompt=prompt)

    async def check_status(self, task_id, api_key=None):
        self.status_calls += 1
        status = self.statuses.pop(0) if self.statuses else ModelTaskStatus.PROCESSING
        if status == ModelTaskStatus.COMPLETED:
            return ModelTask(task_id=task_id, status=status, model_url="https://viewer.example/m",
                             glb_url="https://cdn.example/m.glb")
        if status == ModelTaskStatus.FAILED:
            return ModelTask(task_id=task_id, status=status, error="Model generation failed: out of credits")
        return ModelTask(task_id=task_id, status=status)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        relay_url="https://relay.example",
        openai_api_key="sk-test",
        elevenlabs_api_key="el-test",
        stability_api_key="sk-stability",
        meshy_api_key="msy-test",
        model_poll_interval_s=0,
        saved_stories_path=tmp_path / "saved_stories.json",
    )


@pytest.fixture
def sink():
    return NullAudioSink()


@pytest.fixture
def build_orchestrator(sink):
    """Factory for an orchestrator wired to fakes; keyword overrides replace any collaborator."""

    def _build(**overrides):
        model_client = overrides.pop("model_client", FakeModelClient())
        parts = dict(
            story_client=FakeStoryClient(),
            image_client=FakeImageClient(),
            voice_client=FakeVoiceClient(),
            model_client=model_client,
            saved=SavedCollection(MemoryKVStore()),
            narrator=Narrator(sink),
            poller=ModelTaskPoller(model_client, interval=0, max_attempts=overrides.pop("max_attempts", 60)),
        )
        parts.update(overrides)
        return GenerationOrchestrator(**parts)

    return _build
