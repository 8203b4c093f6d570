import base64
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MYTHOLOGIES = [
    "Greek", "Norse", "Egyptian", "Celtic", "Japanese",
    "Chinese", "Hindu", "Mesopotamian", "Mayan", "Aztec",
    "African", "Native American", "Polynesian", "Slavic", "Persian",
]

THEMES = [
    "Creation", "Heroism", "Love", "Tragedy", "Redemption",
    "Transformation", "Adventure", "Wisdom", "Revenge", "Sacrifice",
    "Underworld", "Trickery", "Justice", "Hubris", "Fate",
]


class StoryLength(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"

    @property
    def reading_minutes(self) -> int:
        return {"short": 5, "medium": 10, "long": 15}[self.value]


class StoryRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    mythology: str
    character: Optional[str] = None
    theme: Optional[str] = None
    length: StoryLength = StoryLength.MEDIUM

    @model_validator(mode="before")
    @classmethod
    def _unwrap_story_prompt(cls, data):
        # The story form posts {"storyPrompt": {...}}; the relay also accepts the bare shape.
        if isinstance(data, dict) and isinstance(data.get("storyPrompt"), dict):
            return data["storyPrompt"]
        return data

    @field_validator("mythology")
    @classmethod
    def _mythology_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("mythology is required")
        return value

    @field_validator("character", "theme")
    @classmethod
    def _blank_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("length", mode="before")
    @classmethod
    def _default_length(cls, value):
        return value or StoryLength.MEDIUM


class StoryArc(BaseModel):
    title: str
    content: str


class ImageResult(BaseModel):
    url: str
    prompt: str = ""
    provider: str = ""

    @property
    def is_inline(self) -> bool:
        return self.url.startswith("data:")


class AudioSource(str, Enum):
    SYNTHESIZED = "synthesized"
    SPEECH_ENGINE = "speech_engine"


class AudioResult(BaseModel):
    """Either an MP3 payload from the voice relay or text handed to the local speech engine."""

    model_config = ConfigDict(populate_by_name=True)

    source: AudioSource = AudioSource.SYNTHESIZED
    audio_content: Optional[str] = Field(default=None, alias="audioContent")
    format: str = "mp3"
    text: Optional[str] = None
    voice_id: Optional[str] = Field(default=None, alias="voiceId")

    def audio_bytes(self) -> bytes:
        if not self.audio_content:
            return b""
        return base64.b64decode(self.audio_content)


class StoryResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = ""
    story: str = ""
    story_arcs: List[StoryArc] = Field(default_factory=list, alias="storyArcs")
    error: Optional[str] = None
    request: Optional[StoryRequest] = Field(default=None, alias="storyPrompt")
    saved_at: Optional[datetime] = Field(default=None, alias="savedAt")
    image: Optional[ImageResult] = None
    audio: Optional[AudioResult] = None

    @property
    def mythology(self) -> str:
        return self.request.mythology if self.request else ""

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ModelTaskStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_provider(cls, raw: Optional[str]) -> "ModelTaskStatus":
        value = (raw or "").strip().lower()
        if value in ("completed", "succeeded"):
            return cls.COMPLETED
        if value in ("failed", "error", "canceled", "cancelled", "expired"):
            return cls.FAILED
        return cls.PROCESSING


class ModelTask(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    task_id: str = Field(alias="taskId")
    status: ModelTaskStatus = ModelTaskStatus.PROCESSING
    model_url: Optional[str] = Field(default=None, alias="modelUrl")
    glb_url: Optional[str] = Field(default=None, alias="glbUrl")
    thumbnail_url: Optional[str] = Field(default=None, alias="thumbnailUrl")
    error: Optional[str] = None
    prompt: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status in (ModelTaskStatus.COMPLETED, ModelTaskStatus.FAILED)


# --- Relay request bodies ---

class VoiceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    text: str = ""
    voice_id: Optional[str] = Field(default=None, alias="voiceId")
    model_id: Optional[str] = Field(default=None, alias="modelId")


class ImageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = ""
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    width: int = 1024
    height: int = 1024


class ModelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = ""
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    style: str = "realistic"
    negative_prompt: str = "blurry, distorted, low quality"


class ModelStatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task_id: str = Field(default="", alias="taskId")
    api_key: Optional[str] = Field(default=None, alias="apiKey")
