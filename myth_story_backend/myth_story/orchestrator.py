import logging
from enum import Enum
from typing import Callable, List, Optional

from pydantic import BaseModel, ValidationError

from .document import Document, render_markdown, render_plain, story_document
from .errors import ProviderError
from .image_clients import image_client_for
from .model_clients import DEFAULT_NEGATIVE_PROMPT, DEFAULT_STYLE, model_client_for
from .models import (
    AudioResult,
    AudioSource,
    ImageResult,
    ModelTask,
    ModelTaskStatus,
    StoryRequest,
    StoryResult,
)
from .narration import AudioSink, Narrator, PlaybackState
from .poller import ModelTaskPoller
from .prompts import default_image_prompt, default_model_prompt, narration_text
from .relay_client import StoryRelayClient, VoiceRelayClient
from .storage import FileKVStore, SavedCollection

logger = logging.getLogger(__name__)


class StoryPhase(str, Enum):
    IDLE = "idle"
    GENERATING = "generating_story"
    READY = "story_ready"
    FAILED = "story_failed"


class StageStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    READY = "ready"
    FAILED = "failed"


class StageState(BaseModel):
    status: StageStatus = StageStatus.IDLE
    error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self.status == StageStatus.RUNNING


class Notification(BaseModel):
    title: str
    description: str
    variant: str = "default"


class GenerationOrchestrator:
    """Drives one story-generation cycle and its optional image, voice and model sub-flows.

    Every sub-flow keeps its own `StageState`, so a failure in one never touches the
    others. A successful new story starts a new cycle: dependent artifacts are reset
    and results still in flight from the previous cycle are dropped when they land.
    """

    def __init__(self, story_client, image_client=None, voice_client=None, model_client=None,
                 saved: Optional[SavedCollection] = None, narrator: Optional[Narrator] = None,
                 poller: Optional[ModelTaskPoller] = None,
                 notify: Optional[Callable[[Notification], None]] = None):
        self.story_client = story_client
        self.image_client = image_client
        self.voice_client = voice_client
        self.model_client = model_client
        self.saved = saved
        self.narrator = narrator or Narrator()
        if poller is None and model_client is not None:
            poller = ModelTaskPoller(model_client)
        self.poller = poller
        self._notify_cb = notify

        self.notifications: List[Notification] = []
        self.cycle = 0
        self.phase = StoryPhase.IDLE
        self.story: Optional[StoryResult] = None
        self.story_error: Optional[str] = None
        self.selected_index: Optional[int] = None

        self.image_stage = StageState()
        self.voice_stage = StageState()
        self.model_stage = StageState()
        self.image: Optional[ImageResult] = None
        self.audio: Optional[AudioResult] = None
        self.model_task: Optional[ModelTask] = None
        self.model: Optional[ModelTask] = None
        self._disposed = False
        self._story_in_flight = False

    @classmethod
    def from_settings(cls, settings, sink: Optional[AudioSink] = None,
                      notify: Optional[Callable[[Notification], None]] = None) -> "GenerationOrchestrator":
        timeout = settings.http_timeout_s
        model_client = model_client_for(settings.model_provider, settings.model_api_key, timeout=timeout)
        return cls(
            story_client=StoryRelayClient(settings.relay_url, settings.relay_api_key, timeout=max(timeout, 120.0)),
            voice_client=VoiceRelayClient(settings.relay_url, settings.relay_api_key, timeout=max(timeout, 60.0)),
            image_client=image_client_for(settings.image_provider, settings.image_api_key, timeout=max(timeout, 60.0)),
            model_client=model_client,
            saved=SavedCollection(FileKVStore(settings.saved_stories_path)),
            narrator=Narrator(sink),
            poller=ModelTaskPoller(
                model_client,
                interval=settings.model_poll_interval_s,
                max_attempts=settings.model_poll_max_attempts,
            ),
            notify=notify,
        )

    # --- helpers ---

    def _notify(self, title: str, description: str, variant: str = "default") -> None:
        note = Notification(title=title, description=description, variant=variant)
        self.notifications.append(note)
        if self._notify_cb is not None:
            self._notify_cb(note)

    def _stale(self, cycle: int) -> bool:
        return self._disposed or cycle != self.cycle

    def _start_cycle(self, story: StoryResult) -> None:
        self.cycle += 1
        if self.poller is not None:
            self.poller.cancel()
        self.narrator.release()
        self.image_stage = StageState()
        self.voice_stage = StageState()
        self.model_stage = StageState()
        self.image = None
        self.audio = None
        self.model_task = None
        self.model = None
        self.story = story
        self.story_error = None
        self.phase = StoryPhase.READY

    def _can_start(self, stage: StageState, client, action: str, feature: str) -> bool:
        if self._disposed:
            return False
        if self.story is None:
            self._notify("No Story Found", f"Please generate or select a story first before {action}", "destructive")
            return False
        if client is None:
            self._notify(f"{feature} Unavailable", f"{feature} is not configured", "destructive")
            return False
        return not stage.running

    def _story_failed(self, title: str, message: str) -> None:
        # Failed only when no previous story is kept
        self.phase = StoryPhase.READY if self.story is not None else StoryPhase.FAILED
        self.story_error = message
        self._notify(title, message, "destructive")

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def generating(self) -> bool:
        return self._story_in_flight

    @property
    def can_generate_story(self) -> bool:
        return not self._disposed and not self._story_in_flight

    # --- story ---

    async def generate_story(self, request, api_key: Optional[str] = None) -> Optional[StoryResult]:
        if self._disposed:
            return None
        if self._story_in_flight:
            self._notify("Generation In Progress", "A story is already being generated", "destructive")
            return None
        if not isinstance(request, StoryRequest):
            try:
                request = StoryRequest.model_validate(request)
            except ValidationError as e:
                message = f"Invalid story request: {e.errors()[0]['msg']}"
                logger.error(message)
                self._story_failed("Generation Error", message)
                return None

        self._story_in_flight = True
        self.phase = StoryPhase.GENERATING
        self.story_error = None
        logger.info(f"Generating {request.mythology} story (cycle {self.cycle + 1})")
        try:
            story = await self.story_client.generate_story(request, api_key=api_key)
        except ProviderError as e:
            if self._disposed:
                return None
            logger.error(f"Story generation failed: {e.message}")
            self._story_failed("Story Generation Failed", e.message)
            return None
        finally:
            self._story_in_flight = False
        if self._disposed:
            return None

        self.selected_index = None
        self._start_cycle(story)
        self._notify("Story Generated", f'"{story.title}" has been created successfully')
        return story

    # --- image sub-flow ---

    async def generate_image(self, custom_prompt: str = "", api_key: Optional[str] = None,
                             width: int = 1024, height: int = 1024) -> Optional[ImageResult]:
        if not self._can_start(self.image_stage, self.image_client, "creating an image", "Image generation"):
            return None
        story, cycle = self.story, self.cycle
        prompt = (custom_prompt or "").strip() or default_image_prompt(story)
        logger.info(f"Generating image with prompt: {prompt}")
        self.image_stage = StageState(status=StageStatus.RUNNING)
        try:
            image = await self.image_client.generate_image(prompt, api_key=api_key, width=width, height=height)
        except ProviderError as e:
            if self._stale(cycle):
                return None
            logger.error(f"Image generation failed: {e.message}")
            self.image_stage = StageState(status=StageStatus.FAILED, error=e.message)
            self._notify("Image Generation Failed", e.message, "destructive")
            return None
        if self._stale(cycle):
            logger.info("Dropping image from a previous story")
            return None

        self.image = image
        story.image = image
        self.image_stage = StageState(status=StageStatus.READY)
        self._notify("Image Generated", "Your mythological scene has been illustrated")
        return image

    # --- voice sub-flow ---

    async def generate_voice(self, voice_id: Optional[str] = None, use_arcs: bool = True, autoplay: bool = True,
                             api_key: Optional[str] = None) -> Optional[AudioResult]:
        if self._disposed:
            return None
        if self.story is None:
            self._notify("No Story Found",
                         "Please generate or select a story first before creating a narration", "destructive")
            return None
        if self.voice_stage.running:
            return None
        story, cycle = self.story, self.cycle
        text = narration_text(story, use_arcs)
        self.narrator.release()
        self.voice_stage = StageState(status=StageStatus.RUNNING)

        if self.voice_client is None:
            audio = AudioResult(source=AudioSource.SPEECH_ENGINE, text=text, voice_id=voice_id)
        else:
            try:
                audio = await self.voice_client.generate_voice(text, voice_id=voice_id, api_key=api_key)
            except ProviderError as e:
                if self._stale(cycle):
                    return None
                logger.error(f"Voice generation failed: {e.message}")
                self.voice_stage = StageState(status=StageStatus.FAILED, error=e.message)
                self._notify("Voice Generation Failed", e.message, "destructive")
                return None
            if self._stale(cycle):
                logger.info("Dropping narration from a previous story")
                return None

        self.audio = audio
        story.audio = audio
        self.voice_stage = StageState(status=StageStatus.READY)
        if autoplay:
            self.narrator.start(audio)
        self._notify("Narration Created", "Your mythological story is being narrated")
        return audio

    def play_narration(self) -> PlaybackState:
        if self.audio is not None and not self._disposed:
            self.narrator.start(self.audio)
        return self.narrator.state

    def toggle_playback(self) -> PlaybackState:
        if self._disposed:
            return self.narrator.state
        return self.narrator.toggle()

    def stop_narration(self) -> None:
        self.narrator.release()

    # --- 3D model sub-flow ---

    async def generate_model(self, custom_prompt: str = "", api_key: Optional[str] = None,
                             style: str = DEFAULT_STYLE,
                             negative_prompt: str = DEFAULT_NEGATIVE_PROMPT) -> Optional[ModelTask]:
        if not self._can_start(self.model_stage, self.model_client, "creating a 3D model", "3D model generation"):
            return None
        story, cycle = self.story, self.cycle
        prompt = (custom_prompt or "").strip() or default_model_prompt(story)
        logger.info(f"Requesting 3D model with prompt: {prompt}")
        self.model_stage = StageState(status=StageStatus.RUNNING)
        try:
            task = await self.model_client.submit(prompt, api_key=api_key, style=style,
                                                  negative_prompt=negative_prompt)
        except ProviderError as e:
            if self._stale(cycle):
                return None
            logger.error(f"3D model submission failed: {e.message}")
            self.model_stage = StageState(status=StageStatus.FAILED, error=e.message)
            self._notify("3D Model Generation Failed", e.message, "destructive")
            return None
        if self._stale(cycle):
            return None

        self.model_task = task
        if task.is_terminal:
            self._on_model_update(task, cycle)
            return task
        self._notify("3D Model Requested", "Your character model is being generated")
        self.poller.start(task, lambda result: self._on_model_update(result, cycle), api_key=api_key)
        return task

    def _on_model_update(self, result: ModelTask, cycle: int) -> None:
        if self._stale(cycle):
            return
        self.model_task = None
        if result.status == ModelTaskStatus.COMPLETED:
            self.model = result
            self.model_stage = StageState(status=StageStatus.READY)
            self._notify("3D Model Ready", "Your character model has been generated")
        else:
            message = result.error or "Model generation failed"
            self.model_stage = StageState(status=StageStatus.FAILED, error=message)
            self._notify("3D Model Generation Failed", message, "destructive")

    async def wait_for_model(self) -> Optional[ModelTask]:
        if self.poller is None:
            return None
        return await self.poller.wait()

    # --- saved stories ---

    def _require_saved(self) -> SavedCollection:
        if self.saved is None:
            raise RuntimeError("No saved-story storage configured")
        return self.saved

    def saved_stories(self) -> List[StoryResult]:
        return self._require_saved().list()

    def save_current(self) -> Optional[StoryResult]:
        if self.story is None:
            self._notify("No Story Found", "Please generate a story before saving", "destructive")
            return None
        snapshot = self._require_saved().save(self.story)
        self._notify("Story Saved", "Your story has been saved to your collection")
        return snapshot

    def select_saved(self, index: int) -> Optional[StoryResult]:
        if self._disposed:
            return None
        if self._story_in_flight:
            self._notify("Generation In Progress", "Wait for the current story to finish before loading another",
                         "destructive")
            return None
        snapshot = self._require_saved().get(index)
        if snapshot is None:
            self._notify("Story Not Found", "That saved story no longer exists", "destructive")
            return None
        self._start_cycle(snapshot)
        self.selected_index = index
        if snapshot.image is not None:
            self.image = snapshot.image
            self.image_stage = StageState(status=StageStatus.READY)
        if snapshot.audio is not None:
            self.audio = snapshot.audio
            self.voice_stage = StageState(status=StageStatus.READY)
        self._notify("Story Loaded", f'"{snapshot.title}" has been loaded')
        return snapshot

    def delete_saved(self, index: int) -> bool:
        if not self._require_saved().delete(index):
            return False
        if self.selected_index == index:
            self.clear_selection()
        elif self.selected_index is not None and self.selected_index > index:
            self.selected_index -= 1
        self._notify("Story Deleted", "The story has been removed from your collection")
        return True

    def clear_selection(self) -> None:
        if self.selected_index is None:
            return
        self.selected_index = None
        self.cycle += 1
        if self.poller is not None:
            self.poller.cancel()
        self.narrator.release()
        self.story = None
        self.image = self.audio = self.model_task = self.model = None
        self.image_stage = StageState()
        self.voice_stage = StageState()
        self.model_stage = StageState()
        if not self._story_in_flight:
            self.phase = StoryPhase.IDLE

    # --- document ---

    def current_document(self, show_arcs: bool = True) -> Optional[Document]:
        if self.story is None:
            return None
        return story_document(self.story, show_arcs)

    def export_markdown(self, show_arcs: bool = True) -> str:
        doc = self.current_document(show_arcs)
        return render_markdown(doc) if doc is not None else ""

    def export_plain(self, show_arcs: bool = True) -> str:
        doc = self.current_document(show_arcs)
        return render_plain(doc) if doc is not None else ""

    # --- lifecycle ---

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self.poller is not None:
            self.poller.cancel()
        self.narrator.release()
        logger.info("Orchestrator disposed")

    def status(self) -> dict:
        return {
            "cycle": self.cycle,
            "phase": self.phase.value,
            "generating": self._story_in_flight,
            "story_title": self.story.title if self.story else None,
            "story_error": self.story_error,
            "image": self.image_stage.model_dump(mode="json"),
            "voice": self.voice_stage.model_dump(mode="json"),
            "model": self.model_stage.model_dump(mode="json"),
            "playback": self.narrator.state.value,
            "polling": self.poller.task_id if self.poller is not None else None,
        }
