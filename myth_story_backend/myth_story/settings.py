import os
import logging
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    load_dotenv()

IMAGE_PROVIDERS = ("stability", "pixlr")
MODEL_PROVIDERS = ("meshy", "masterpiecex")


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


class Settings(BaseModel):
    """Process-wide configuration, built once at startup and passed to clients."""

    model_config = ConfigDict(protected_namespaces=())

    relay_url: str = "http://localhost:8000"
    relay_api_key: str = ""

    openai_api_key: str = ""
    openai_base_url: Optional[str] = None
    story_model: str = "gpt-4o-mini"
    story_max_tokens: int = 4000

    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = "EXAVITQu4vr4xnSDxMaL"
    elevenlabs_model_id: str = "eleven_turbo_v2"

    image_provider: str = "stability"
    stability_api_key: str = ""
    pixlr_api_key: str = ""

    model_provider: str = "meshy"
    meshy_api_key: str = ""
    masterpiecex_api_key: str = ""

    model_poll_interval_s: float = 10.0
    # 0 disables the cap
    model_poll_max_attempts: int = 60

    http_timeout_s: float = 30.0
    saved_stories_path: Path = Field(default_factory=lambda: Path.home() / ".myth_story" / "saved_stories.json")
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        # Comma-separated list of allowed origins for CORS; wildcard unless explicitly set.
        origins_env = _env("ALLOWED_ORIGINS")
        origins = [o.strip() for o in origins_env.split(",") if o.strip()] if origins_env else ["*"]

        image_provider = _env("IMAGE_PROVIDER", "stability").lower()
        if image_provider not in IMAGE_PROVIDERS:
            logger.warning(f"Unknown IMAGE_PROVIDER {image_provider!r}, falling back to stability")
            image_provider = "stability"
        model_provider = _env("MODEL_PROVIDER", "meshy").lower()
        if model_provider not in MODEL_PROVIDERS:
            logger.warning(f"Unknown MODEL_PROVIDER {model_provider!r}, falling back to meshy")
            model_provider = "meshy"

        saved_path = _env("SAVED_STORIES_PATH")
        values = dict(
            relay_url=_env("MYTH_RELAY_URL", "http://localhost:8000").rstrip("/"),
            relay_api_key=_env("RELAY_API_KEY"),
            openai_api_key=_env("OPENAI_API_KEY"),
            openai_base_url=_env("OPENAI_BASE_URL") or None,
            story_model=_env("STORY_MODEL", "gpt-4o-mini"),
            story_max_tokens=_env_int("STORY_MAX_TOKENS", 4000),
            elevenlabs_api_key=_env("ELEVENLABS_API_KEY"),
            elevenlabs_voice_id=_env("ELEVENLABS_VOICE_ID", "EXAVITQu4vr4xnSDxMaL"),
            elevenlabs_model_id=_env("ELEVENLABS_MODEL_ID", "eleven_turbo_v2"),
            image_provider=image_provider,
            stability_api_key=_env("STABILITY_API_KEY"),
            pixlr_api_key=_env("PIXLR_API_KEY"),
            model_provider=model_provider,
            meshy_api_key=_env("MESHY_API_KEY"),
            masterpiecex_api_key=_env("MASTERPIECEX_API_KEY"),
            model_poll_interval_s=_env_float("MODEL_POLL_INTERVAL_S", 10.0),
            model_poll_max_attempts=_env_int("MODEL_POLL_MAX_ATTEMPTS", 60),
            http_timeout_s=_env_float("HTTP_TIMEOUT_S", 30.0),
            allowed_origins=origins,
        )
        if saved_path:
            values["saved_stories_path"] = Path(saved_path).expanduser()
        return cls(**values)

    @property
    def image_api_key(self) -> str:
        return self.pixlr_api_key if self.image_provider == "pixlr" else self.stability_api_key

    @property
    def model_api_key(self) -> str:
        return self.masterpiecex_api_key if self.model_provider == "masterpiecex" else self.meshy_api_key

    def missing_keys(self) -> List[str]:
        missing = []
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if not self.elevenlabs_api_key:
            missing.append("ELEVENLABS_API_KEY")
        if not self.image_api_key:
            missing.append("PIXLR_API_KEY" if self.image_provider == "pixlr" else "STABILITY_API_KEY")
        if not self.model_api_key:
            missing.append("MASTERPIECEX_API_KEY" if self.model_provider == "masterpiecex" else "MESHY_API_KEY")
        return missing

    def has_all_keys(self) -> bool:
        missing = self.missing_keys()
        if missing:
            logger.warning(f"Missing API keys: {', '.join(missing)}")
        return not missing


def load_settings() -> Settings:
    return Settings.from_env()
