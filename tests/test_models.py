import pytest
from conftest import make_story
from pydantic import ValidationError

from myth_story.models import AudioResult, ModelTask, ModelTaskStatus, StoryRequest, StoryResult
from myth_story.prompts import default_image_prompt, default_model_prompt, narration_text
from myth_story.provider_client import error_message_from_body, mask_key


class TestStoryRequest:
    def test_blank_optionals_become_none(self):
        req = StoryRequest(mythology=" Norse ", character="  ", theme="")
        assert req.mythology == "Norse"
        assert req.character is None and req.theme is None

    def test_mythology_required(self):
        with pytest.raises(ValidationError):
            StoryRequest(mythology="  ")
        with pytest.raises(ValidationError):
            StoryRequest.model_validate({"theme": "Love"})

    def test_free_form_mythology(self):
        assert StoryRequest(mythology="Hawaiian").mythology == "Hawaiian"


@pytest.mark.parametrize("raw,expected", [
    ("SUCCEEDED", ModelTaskStatus.COMPLETED),
    ("completed", ModelTaskStatus.COMPLETED),
    ("FAILED", ModelTaskStatus.FAILED),
    ("canceled", ModelTaskStatus.FAILED),
    ("PENDING", ModelTaskStatus.PROCESSING),
    (None, ModelTaskStatus.PROCESSING),
])
def test_model_status_mapping(raw, expected):
    assert ModelTaskStatus.from_provider(raw) == expected


def test_wire_shape_uses_camel_case():
    story = make_story()
    story.audio = AudioResult(audio_content="SUQz", voice_id="v-1")
    wire = story.to_wire()

    assert set(wire) == {"title", "story", "storyArcs", "storyPrompt", "audio"}
    assert wire["audio"]["audioContent"] == "SUQz"
    assert StoryResult.model_validate(wire).audio.voice_id == "v-1"
    assert ModelTask(taskId="t").task_id == "t"


def test_prompt_helpers():
    story = make_story(character="Odysseus", arcs=0)
    assert default_image_prompt(story) == (
        "The Trials of Odysseus, Greek mythology, epic scene, dramatic lighting, detailed illustration"
    )
    assert default_model_prompt(story) == "Odysseus, hero from Greek mythology, full body character"
    assert default_model_prompt(make_story()).startswith("The Trials of Odysseus, hero from Greek")
    assert narration_text(story) == story.story


def test_error_message_from_body():
    assert error_message_from_body('{"error": {"message": "bad key"}}', "default") == "bad key"
    assert error_message_from_body('{"detail": "nope"}', "default") == "nope"
    assert error_message_from_body("<html>", "default") == "default"
    assert mask_key("sk-1234567890") == "sk-12..."
    assert mask_key("") == ""
